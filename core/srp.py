"""
core/srp.py -- Server side of the SRP-6a password-authenticated key exchange.

Pure math, no I/O. The engine holds one fixed parameter set (safe-prime group
plus hash function) which the browser client shares implicitly. If the two
sides disagree on any of the conventions below, proofs simply never match.

Wire conventions (match the client library byte for byte):
  - Integers are serialized big-endian at their minimal length; zero is a
    single 0x00 byte.
  - H(a, b, ...) hashes the concatenation of the serialized arguments.
  - H_pad(...) left-pads every argument to the byte length of N first.
  - k  = H_pad(N, g)           u  = H_pad(A, B)
  - B  = (k*v + g^b) mod N     S  = (A * v^u)^b mod N
  - M1 = H(A, B, S)            M2 = H(A, M1, S)
  - All numerics cross the API boundary as lowercase hex without a prefix.

Handshake state between step1 and step2 is serialized to a JSON string so it
can sit in any key-value store. The payload carries a version tag and a
fingerprint of the parameter set: a state produced under different parameters
is rejected instead of silently producing wrong proofs.

Security:
  - b is drawn fresh from secrets on every step1 call and never reused.
  - A == 0 (mod N) is rejected before any other work; it would force S == 0.
  - M1 is compared in constant time.
  - Every failure raises the same InvalidProof -- callers must not be able to
    distinguish a malformed A from a wrong password.

Layer rule: core/ is the kernel. No imports from api/, auth/, or cache/.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import secrets
from dataclasses import dataclass
from functools import cached_property

logger = logging.getLogger("srpauth.srp")

STATE_VERSION = 1

_HEX_RE = re.compile(r"[0-9a-fA-F]+")

# RFC 5054 Appendix A, 2048-bit group.
_N_2048 = int(
    "AC6BDB41324A9A9BF166DE5E1389582FAF72B6651987EE07FC3192943DB56050"
    "A37329CBB4A099ED8193E0757767A13DD52312AB4B03310DCD7F48A9DA04FD50"
    "E8083969EDB767B0CF6095179A163AB3661A05FBD5FAAAE82918A9962F0B93B8"
    "55F97993EC975EEAA80D740ADBF4FF747359D041D5C33EA71D281E446B14773B"
    "CA97B43A23FB801676BD207A436C6481F1D2B9078717461A5B9D32E688F87748"
    "544523B524B0D57D5EA77A2775D2ECFA032CFBDBF52FB3786160279004E57AE6"
    "AF874E7303CE53299CCC041C7BC308D82A5698F3A8D0C38271AE35F8E9DBFBB6"
    "94B5C803D89F7AE435DE236D525F54759B65E372FCD68EF20FA7111F9E4AFF73",
    16,
)
_G_2048 = 2


class InvalidProof(Exception):
    """Raised for any SRP failure: bad proof, bad public value, bad state."""


# ---------------------------------------------------------------------------
# Integer <-> bytes helpers
# ---------------------------------------------------------------------------


def int_to_bytes(value: int) -> bytes:
    """Minimal big-endian encoding; zero encodes as a single byte."""
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")


def bytes_to_int(data: bytes) -> int:
    return int.from_bytes(data, "big")


def parse_hex(value: str) -> int:
    """Parse an unprefixed hex string. Raises InvalidProof on anything else."""
    if not isinstance(value, str) or not _HEX_RE.fullmatch(value):
        raise InvalidProof("malformed numeric value")
    return int(value, 16)


def to_hex(value: int) -> str:
    return format(value, "x")


# ---------------------------------------------------------------------------
# Parameter set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SRPParameters:
    """The fixed (N, g, H) triple shared by server and client."""

    N: int = _N_2048
    g: int = _G_2048
    hash_name: str = "sha512"

    @property
    def n_bytes(self) -> int:
        return (self.N.bit_length() + 7) // 8

    @cached_property
    def fingerprint(self) -> str:
        """Short stable digest identifying this parameter set inside serialized state."""
        material = f"{self.hash_name}:{self.N:x}:{self.g:x}".encode()
        return hashlib.sha256(material).hexdigest()[:16]

    def hash(self, *values: int | bytes) -> int:
        h = hashlib.new(self.hash_name)
        for v in values:
            h.update(v if isinstance(v, bytes) else int_to_bytes(v))
        return bytes_to_int(h.digest())

    def hash_padded(self, *values: int) -> int:
        width = self.n_bytes
        h = hashlib.new(self.hash_name)
        for v in values:
            h.update(int_to_bytes(v).rjust(width, b"\x00"))
        return bytes_to_int(h.digest())

    @cached_property
    def k(self) -> int:
        return self.hash_padded(self.N, self.g)


# ---------------------------------------------------------------------------
# Server engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerStep1:
    """Result of step1: the public ephemeral B and the opaque state for step2."""

    B: int
    state: str

    @property
    def B_hex(self) -> str:
        return to_hex(self.B)


class SRPEngine:
    """SRP-6a server computations over one parameter set.

    Usage:
        engine = SRPEngine(SRPParameters(hash_name="sha512"))
        step1 = engine.step1("alice", salt_hex, verifier_hex)
        # send step1.B_hex to the client, keep step1.state server-side
        m2_hex = engine.step2(step1.state, a_hex, m1_hex)   # raises InvalidProof
    """

    def __init__(self, params: SRPParameters | None = None) -> None:
        self.params = params or SRPParameters()

    @classmethod
    def from_settings(cls, settings) -> "SRPEngine":
        return cls(SRPParameters(hash_name=settings.srp_hash))

    def generate_private_value(self) -> int:
        """Random b in [1, N) with at least 256 bits of entropy before reduction."""
        num_bits = max(256, self.params.N.bit_length())
        while True:
            value = secrets.randbits(num_bits) % self.params.N
            if value != 0:
                return value

    def step1(self, username: str, salt_hex: str, verifier_hex: str) -> ServerStep1:
        """Compute B = k*v + g^b (mod N) and serialize the handshake state."""
        p = self.params
        verifier = parse_hex(verifier_hex)
        salt = parse_hex(salt_hex)
        b = self.generate_private_value()
        B = (p.k * verifier + pow(p.g, b, p.N)) % p.N
        state = json.dumps(
            {
                "v": STATE_VERSION,
                "params": p.fingerprint,
                "I": username,
                "s": to_hex(salt),
                "verifier": to_hex(verifier),
                "b": to_hex(b),
                "B": to_hex(B),
            },
            separators=(",", ":"),
        )
        return ServerStep1(B=B, state=state)

    def step2(self, state: str, client_public_hex: str, client_proof_hex: str) -> str:
        """Verify the client proof M1 and return the server proof M2 as hex.

        Raises InvalidProof on every failure path.
        """
        p = self.params
        verifier, b, B = self._load_state(state)
        A = parse_hex(client_public_hex)
        M1 = parse_hex(client_proof_hex)

        if A % p.N == 0:
            raise InvalidProof("client public ephemeral is zero modulo N")

        u = p.hash_padded(A, B)
        S = pow(A * pow(verifier, u, p.N), b, p.N)
        expected = p.hash(A, B, S)
        if not hmac.compare_digest(int_to_bytes(expected), int_to_bytes(M1)):
            raise InvalidProof("client proof mismatch")
        return to_hex(p.hash(A, M1, S))

    def _load_state(self, state: str) -> tuple[int, int, int]:
        try:
            data = json.loads(state)
        except (TypeError, ValueError) as exc:
            raise InvalidProof("unreadable handshake state") from exc
        if not isinstance(data, dict):
            raise InvalidProof("unreadable handshake state")
        if data.get("v") != STATE_VERSION:
            logger.warning("Rejected SRP state with version %r", data.get("v"))
            raise InvalidProof("unsupported handshake state version")
        if data.get("params") != self.params.fingerprint:
            logger.warning("Rejected SRP state produced under a different parameter set")
            raise InvalidProof("handshake state parameter mismatch")
        return parse_hex(data.get("verifier")), parse_hex(data.get("b")), parse_hex(data.get("B"))
