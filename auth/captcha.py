"""
auth/captcha.py -- Cloudflare Turnstile verification.

One outbound call per check:
  POST https://challenges.cloudflare.com/turnstile/v0/siteverify
  form: secret, response, remoteip (optional)
  JSON: {"success": bool, "error-codes": [...], ...}

verify() returns a plain bool and never raises. A network error or an
unparseable reply counts as a failed check (fail closed) and is logged.

DisabledCaptchaVerifier exists for local development only; Settings refuses
CAPTCHA_ENABLED=false unless DEBUG=true.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger("srpauth.captcha")

# Module-level session shared across all verifier calls for connection pooling.
# max_redirects=3 replaces the requests default of 30 -- siteverify never redirects.
_session = requests.Session()
_session.max_redirects = 3


class TurnstileVerifier:
    def __init__(self, secret_key: str, verify_url: str, timeout: float = 10) -> None:
        self._secret_key = secret_key
        self._verify_url = verify_url
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "TurnstileVerifier":
        return cls(settings.turnstile_secret_key, settings.turnstile_verify_url)

    def verify(self, token: str, remote_ip: Optional[str] = None) -> bool:
        """Return True if Cloudflare accepts the widget token."""
        form = {"secret": self._secret_key, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip
        try:
            resp = _session.post(self._verify_url, data=form, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Turnstile verification error: %s", e)
            return False

        if not data.get("success"):
            logger.warning("Turnstile verification failed: %s", data.get("error-codes"))
            return False
        return True


class DisabledCaptchaVerifier:
    """Accepts every token. Development only."""

    def verify(self, token: str, remote_ip: Optional[str] = None) -> bool:
        return True


def build_captcha_verifier(settings):
    if not settings.captcha_enabled:
        logger.warning("CAPTCHA verification is DISABLED (development mode)")
        return DisabledCaptchaVerifier()
    return TurnstileVerifier.from_settings(settings)
