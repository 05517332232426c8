"""
Short-lived, single-use code store (email verification codes).

Two backends behind one interface so callers never care where codes live:

* ``InMemoryCodeStore`` -- expiry-checked dict, cleared on use; fine for a
  single process and for tests.
* ``RedisCodeStore``    -- ``SET ... EX`` for native expiry and a Lua
  script for atomic compare-and-delete, so a code can be consumed at most
  once even across processes.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis.asyncio as aioredis


def _key(purpose: str, subject: object) -> str:
    return f"code:{purpose}:{subject}"


class CodeStore(ABC):
    @abstractmethod
    async def put(
        self, purpose: str, subject: object, code: str, ttl_seconds: int
    ) -> None:
        """Store *code*, replacing any earlier code for the same subject."""

    @abstractmethod
    async def consume(self, purpose: str, subject: object, code: str) -> bool:
        """Return True and forget the code if it matches and has not expired."""

    async def purge_expired(self) -> int:
        return 0


class InMemoryCodeStore(CodeStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._codes: dict[str, tuple[str, float]] = {}

    async def put(self, purpose, subject, code, ttl_seconds) -> None:
        self._codes[_key(purpose, subject)] = (code, self._clock() + ttl_seconds)

    async def consume(self, purpose, subject, code) -> bool:
        key = _key(purpose, subject)
        entry = self._codes.get(key)
        if entry is None:
            return False
        stored, expires_at = entry
        if self._clock() >= expires_at:
            del self._codes[key]
            return False
        if stored != code:
            return False
        del self._codes[key]
        return True

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, exp) in self._codes.items() if now >= exp]
        for key in expired:
            del self._codes[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._codes)


class RedisCodeStore(CodeStore):
    _CONSUME = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def put(self, purpose, subject, code, ttl_seconds) -> None:
        await self.redis.set(_key(purpose, subject), code, ex=ttl_seconds)

    async def consume(self, purpose, subject, code) -> bool:
        """Atomic check-and-delete via Lua."""
        return bool(await self.redis.eval(self._CONSUME, 1, _key(purpose, subject), code))


def build_code_store(backend: str, client: Optional[aioredis.Redis] = None) -> CodeStore:
    if backend == "redis":
        if client is None:
            from .redis_client import get_redis

            client = get_redis()
        return RedisCodeStore(client)
    if backend == "memory":
        return InMemoryCodeStore()
    raise ValueError(f"Unknown code store backend: {backend!r}")
