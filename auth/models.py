"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the token issuer and the service do the work.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CredentialRecord:
    """SRP credentials for one local account.

    salt and verifier are hex strings computed by the client at registration.
    The plaintext password is never seen by the server, and the verifier alone
    does not let an attacker log in -- it has to be brute-forced offline.

    username is stored lowercase; callers normalize before lookup.
    """

    username: str
    salt: str  # hex
    verifier: str  # hex
    id: str | None = None  # uuid4, assigned by the store
    created_at: str | None = None


@dataclass
class HandshakeSession:
    """Server-side state between login step 1 and step 2.

    Lives in the ephemeral store under auth:srp:<session_id> for a few minutes
    and is removed the moment step 2 reads it.
    """

    session_id: str
    username: str
    server_state: str  # serialized SRPEngine step1 state
    created_at: float


@dataclass
class TokenClaims:
    """Verified JWT claims."""

    sub: str  # user id
    username: str
    type: str  # "access" or "refresh"
    iat: int
    exp: int


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class AuthenticatedUser:
    """Identity extracted from a valid access token."""

    id: str
    username: str
