"""TTL caches for threat-intelligence lookups."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from linkwatch.infra.redis import RedisProxy, redis_client

Clock = Callable[[], float]


class TtlCache(Protocol):
    """A present, unexpired entry is authoritative; ``None`` means unknown."""

    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, *, ttl: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class InMemoryTtlCache(TtlCache):
    """Process-local cache with an injectable clock, used in development and tests."""

    def __init__(self, *, clock: Clock = time.monotonic) -> None:
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self.clock():
            self._entries.pop(key, None)
            return None
        return entry.value

    async def set(self, key: str, value: Any, *, ttl: int) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self.clock() + ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)


class RedisTtlCache(TtlCache):
    """JSON values in Redis with native key expiry."""

    def __init__(self, redis: RedisProxy | None = None, *, namespace: str = "linkwatch:") -> None:
        self.redis = redis or redis_client
        self.namespace = namespace

    def _key(self, suffix: str) -> str:
        return f"{self.namespace}{suffix}"

    async def get(self, key: str) -> Any | None:
        raw = await self.redis.get(self._key(key))
        if not raw:
            return None
        try:
            if isinstance(raw, bytes):
                decoded = raw.decode("utf-8")
            else:
                decoded = str(raw)
            return json.loads(decoded)
        except json.JSONDecodeError:
            return None

    async def set(self, key: str, value: Any, *, ttl: int) -> None:
        payload = json.dumps(value)
        await self.redis.set(self._key(key), payload, ex=max(1, int(ttl)))

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))
