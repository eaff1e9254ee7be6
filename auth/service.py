"""
auth/service.py -- Orchestrates registration, SRP login, token rotation and logout.

The password never reaches this module. Registration receives a salt and a
verifier computed by the client; login is the two-step SRP-6a handshake:

  step1: client sends username  -> server returns salt, B and a session id
  step2: client sends A and M1  -> server checks M1, returns M2 and tokens

Login state machine:

  NoSession --step1--> AwaitingProof[session_id] --step2 ok--> Authenticated
                                                 --step2 fail / TTL--> NoSession

AwaitingProof is consumed exactly once: step2 pops the handshake from the
ephemeral store BEFORE looking at the proof, so a failed attempt burns the
session just like a successful one and a captured (session_id, A, M1) triple
cannot be replayed.

Refresh rotation and theft detection:
  Every refresh hands out a new refresh token and blacklists the old one. Only
  the newest token is stored per user. If a token that verifies but is
  blacklisted or NOT the stored one shows up, somebody is replaying a
  superseded token -- either the legitimate client or a thief holds a stale
  copy. We cannot tell which, so the stored record is deleted and both
  parties must log in again.

  The swap from old to new token is a compare-and-swap on the store. Two
  concurrent refreshes with the same token: one wins, the other sees a
  mismatch and takes the theft path.

Error handling:
  Every failure surfaces as an AuthError subclass with a generic message
  (see auth/errors.py). Store and network failures propagate untouched.

Layer rule: no imports from api/. Collaborators are injected.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Callable
from typing import Optional

from auth.errors import CaptchaFailed, InvalidCredentials, InvalidRefreshToken, SessionExpiredOrInvalid
from auth.models import AuthenticatedUser, CredentialRecord, HandshakeSession
from auth.tokens import ACCESS, REFRESH, srp_session_key
from core.srp import InvalidProof, to_hex

logger = logging.getLogger("srpauth.auth")

_SESSION_ID_BYTES = 24  # 32 url-safe characters


def normalize_username(username: str) -> str:
    return username.strip().lower()


class AuthenticationService:
    """Usage:
    service = AuthenticationService(settings, credentials, sessions, engine, tokens, captcha)
    service.register("alice", salt_hex, verifier_hex, captcha_token)
    step1 = service.login_step1("alice", captcha_token)
    step2 = service.login_step2(step1["session_id"], a_hex, m1_hex)
    """

    def __init__(
        self,
        settings,
        credentials,
        sessions,
        engine,
        tokens,
        captcha,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credentials = credentials
        self._sessions = sessions
        self._engine = engine
        self._tokens = tokens
        self._captcha = captcha
        self._clock = clock
        self.session_ttl: int = settings.srp_session_ttl_seconds

        # Timing equalization for unknown usernames: step1 runs against these
        # throwaway credentials so the modular exponentiation still happens.
        params = engine.params
        self._dummy_salt = secrets.token_hex(16)
        self._dummy_verifier = to_hex(pow(params.g, secrets.randbits(256), params.N))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        salt: str,
        verifier: str,
        captcha_token: str,
        client_ip: Optional[str] = None,
    ) -> dict:
        """Store a new credential record. Does not log the user in.

        The salt is stored exactly as sent; login step 1 returns it unchanged.
        Raises CaptchaFailed, or UsernameTaken from the store's UNIQUE constraint.
        """
        self._require_captcha(captcha_token, client_ip)
        record = self._credentials.insert(
            CredentialRecord(username=normalize_username(username), salt=salt, verifier=verifier.lower())
        )
        logger.info("User registered: %s", record.username)
        return {"success": True}

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login_step1(self, username: str, captcha_token: str, client_ip: Optional[str] = None) -> dict:
        """Begin the SRP handshake: return salt, B and a single-use session id."""
        self._require_captcha(captcha_token, client_ip)
        normalized = normalize_username(username)
        record = self._credentials.get(normalized)
        if record is None:
            self._engine.step1(normalized, self._dummy_salt, self._dummy_verifier)
            raise InvalidCredentials()

        step1 = self._engine.step1(record.username, record.salt, record.verifier)
        session = HandshakeSession(
            session_id=secrets.token_urlsafe(_SESSION_ID_BYTES),
            username=record.username,
            server_state=step1.state,
            created_at=self._clock(),
        )
        self._sessions.set_with_ttl(
            srp_session_key(session.session_id),
            json.dumps(
                {
                    "username": session.username,
                    "server_state": session.server_state,
                    "created_at": session.created_at,
                }
            ),
            self.session_ttl,
        )
        return {
            "session_id": session.session_id,
            "salt": record.salt,
            "server_public_ephemeral": step1.B_hex,
        }

    def login_step2(self, session_id: str, client_public_ephemeral: str, client_proof: str) -> dict:
        """Finish the handshake: verify M1, return M2 plus a fresh token pair."""
        raw = self._sessions.pop(srp_session_key(session_id))
        if raw is None:
            raise SessionExpiredOrInvalid()

        try:
            data = json.loads(raw)
            session = HandshakeSession(
                session_id=session_id,
                username=data["username"],
                server_state=data["server_state"],
                created_at=data["created_at"],
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarded unreadable SRP handshake session")
            raise InvalidCredentials() from None

        try:
            server_proof = self._engine.step2(session.server_state, client_public_ephemeral, client_proof)
        except InvalidProof:
            logger.warning("SRP verification failed for %s", session.username)
            raise InvalidCredentials() from None

        record = self._credentials.get(session.username)
        if record is None or record.id is None:
            raise InvalidCredentials()

        pair = self._tokens.generate_tokens(record.id, record.username)
        logger.info("User logged in: %s", record.username)
        return {
            "server_proof": server_proof,
            "access_token": pair.access_token,
            "refresh_token": pair.refresh_token,
        }

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def refresh_tokens(self, refresh_token: str) -> dict:
        """Rotate a refresh token. Replaying a superseded token revokes the session."""
        claims = self._tokens.decode(refresh_token, REFRESH)
        if claims is None:
            raise InvalidRefreshToken()

        if self._tokens.is_blacklisted(refresh_token):
            # A rotated-out token still verifies; replaying it is the theft signal.
            self._revoke_for_reuse(claims.sub)
            raise InvalidRefreshToken()

        stored = self._tokens.get_stored_refresh(claims.sub)
        if stored != refresh_token:
            self._revoke_for_reuse(claims.sub)
            raise InvalidRefreshToken()

        pair = self._tokens.issue_pair(claims.sub, claims.username)
        if not self._tokens.rotate_refresh(claims.sub, refresh_token, pair.refresh_token):
            self._revoke_for_reuse(claims.sub)
            raise InvalidRefreshToken()

        self._tokens.blacklist(refresh_token, claims)
        return {"access_token": pair.access_token, "refresh_token": pair.refresh_token}

    def logout(self, user_id: str, refresh_token: Optional[str] = None) -> dict:
        """Drop the user's refresh record; blacklist the given token if it still verifies.

        Always succeeds, repeated calls are harmless.
        """
        self._tokens.revoke_refresh(user_id)
        if refresh_token:
            claims = self._tokens.decode(refresh_token, REFRESH)
            if claims is not None:
                self._tokens.blacklist(refresh_token, claims)
        logger.info("User logged out: %s", user_id)
        return {"success": True}

    def validate_token(self, token: str) -> AuthenticatedUser | None:
        """Return the identity behind a valid access token, or None."""
        if not token:
            return None
        claims = self._tokens.decode(token, ACCESS)
        if claims is None:
            return None
        return AuthenticatedUser(id=claims.sub, username=claims.username)

    def get_profile(self, user_id: str) -> CredentialRecord | None:
        return self._credentials.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_captcha(self, captcha_token: str, client_ip: Optional[str]) -> None:
        if not self._captcha.verify(captcha_token, client_ip):
            raise CaptchaFailed()

    def _revoke_for_reuse(self, user_id: str) -> None:
        self._tokens.revoke_refresh(user_id)
        logger.warning("Refresh token reuse detected for user %s -- session revoked", user_id)
