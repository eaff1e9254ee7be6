"""
cache/redis_store.py -- Redis-backed ephemeral store (SESSION_BACKEND=redis).

Same contract as cache/store.py EphemeralStore, but the TTL bookkeeping is
Redis's own (SET ... EX). Use this backend when more than one API process
serves logins: handshake sessions and refresh records must be visible to
every process.

Atomicity:
  pop()             -> GETDEL (Redis >= 6.2)
  compare_and_set() -> a small Lua script; Redis runs scripts atomically.
"""

from __future__ import annotations

from typing import Optional

from redis import Redis

_CAS_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  redis.call('SET', KEYS[1], ARGV[2], 'EX', tonumber(ARGV[3]))
  return 1
end
return 0
"""


class RedisEphemeralStore:
    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, client: Redis) -> None:
        self.client = client
        self._cas = self.client.register_script(_CAS_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT) -> "RedisEphemeralStore":
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be a positive number of seconds")
        self.client.set(key, value, ex=ttl)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def pop(self, key: str) -> Optional[str]:
        return self.client.getdel(key)

    def exists(self, key: str) -> bool:
        return self.client.exists(key) == 1

    def ttl(self, key: str) -> int:
        return int(self.client.ttl(key))

    def compare_and_set(self, key: str, expected: str, value: str, ttl: int) -> bool:
        return bool(self._cas(keys=[key], args=[expected, value, ttl]))

    def purge_expired(self) -> int:
        # Redis expires keys on its own.
        return 0

    def ping(self) -> bool:
        return bool(self.client.ping())

    def close(self) -> None:
        self.client.close()
