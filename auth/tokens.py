"""
auth/tokens.py -- JWT issuance, verification, and refresh-token bookkeeping.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id), username, type ("access" | "refresh"), iat, exp and a
       random jti.
       Verification returns None on any failure -- the service layer decides
       which error that becomes.

  Token type: access and refresh tokens share the signing key, so the type
       claim is the only thing stopping a refresh token from being presented
       as an access token (and vice versa). decode() always checks it.

  Refresh records: the single trusted refresh token for a user lives at
       auth:refresh:<user_id> in the ephemeral store, with a TTL equal to the
       refresh token's own lifetime. Both values come from the same
       refresh_token_ttl, so the record can never outlive the token or expire
       before it.

  Blacklist: superseded or logged-out refresh tokens sit at
       auth:blacklist:<token> for the rest of their natural lifetime; after
       that the signature check rejects them anyway.

Layer rule: no imports from api/. The ephemeral store is injected.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable

from jose import JWTError, jwt

from auth.models import TokenClaims, TokenPair

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"


# ---------------------------------------------------------------------------
# Ephemeral store key builders
# ---------------------------------------------------------------------------

SRP_SESSION_PREFIX = "auth:srp:"
REFRESH_TOKEN_PREFIX = "auth:refresh:"
TOKEN_BLACKLIST_PREFIX = "auth:blacklist:"


def srp_session_key(session_id: str) -> str:
    return SRP_SESSION_PREFIX + session_id


def refresh_record_key(user_id: str) -> str:
    return REFRESH_TOKEN_PREFIX + user_id


def blacklist_key(token: str) -> str:
    return TOKEN_BLACKLIST_PREFIX + token


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Signs and verifies tokens; keeps the per-user refresh record in step.

    Usage:
        issuer = TokenIssuer(settings, ephemeral_store)
        pair = issuer.generate_tokens(user_id, "alice")
        claims = issuer.decode(pair.access_token, ACCESS)
    """

    def __init__(self, settings, sessions, clock: Callable[[], float] = time.time) -> None:
        self._secret = settings.secret_key
        self.access_ttl: int = settings.access_token_ttl
        self.refresh_ttl: int = settings.refresh_token_ttl
        self._sessions = sessions
        self._clock = clock

    # ------------------------------------------------------------------
    # Encode / decode
    # ------------------------------------------------------------------

    def _encode(self, user_id: str, username: str, token_type: str, ttl: int) -> str:
        issued_at = int(self._clock())
        payload = {
            "sub": user_id,
            "username": username,
            "type": token_type,
            "iat": issued_at,
            "exp": issued_at + ttl,
            # Two pairs minted in the same second would otherwise be identical.
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def issue_pair(self, user_id: str, username: str) -> TokenPair:
        """Sign a fresh access + refresh pair without touching the store."""
        return TokenPair(
            access_token=self._encode(user_id, username, ACCESS, self.access_ttl),
            refresh_token=self._encode(user_id, username, REFRESH, self.refresh_ttl),
        )

    def generate_tokens(self, user_id: str, username: str) -> TokenPair:
        """Issue a pair and make its refresh token the user's trusted one."""
        pair = self.issue_pair(user_id, username)
        self.store_refresh(user_id, pair.refresh_token)
        return pair

    def decode(self, token: str, expected_type: str) -> TokenClaims | None:
        """Verify signature, expiry and type. Returns the claims or None on any failure."""
        try:
            payload = jwt.decode(token, self._secret, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") != expected_type:
            return None
        try:
            return TokenClaims(
                sub=str(payload["sub"]),
                username=str(payload["username"]),
                type=payload["type"],
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def remaining_lifetime(self, claims: TokenClaims) -> int:
        """Seconds until the token expires, never less than 1 (store TTLs must be positive)."""
        return max(1, claims.exp - int(self._clock()))

    # ------------------------------------------------------------------
    # Refresh record
    # ------------------------------------------------------------------

    def store_refresh(self, user_id: str, refresh_token: str) -> None:
        self._sessions.set_with_ttl(refresh_record_key(user_id), refresh_token, self.refresh_ttl)

    def get_stored_refresh(self, user_id: str) -> str | None:
        return self._sessions.get(refresh_record_key(user_id))

    def rotate_refresh(self, user_id: str, old_token: str, new_token: str) -> bool:
        """Compare-and-swap the stored record from old_token to new_token."""
        return self._sessions.compare_and_set(refresh_record_key(user_id), old_token, new_token, self.refresh_ttl)

    def revoke_refresh(self, user_id: str) -> None:
        self._sessions.delete(refresh_record_key(user_id))

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------

    def blacklist(self, token: str, claims: TokenClaims) -> None:
        self._sessions.set_with_ttl(blacklist_key(token), "1", self.remaining_lifetime(claims))

    def is_blacklisted(self, token: str) -> bool:
        return self._sessions.exists(blacklist_key(token))
