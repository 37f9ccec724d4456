from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value


class RedisStore:
    """Baseline values kept in Redis so they survive restarts."""

    def __init__(self, redis: Redis, prefix: str = "yield_dashboard:"):
        self.redis = redis
        self.prefix = prefix

    async def get(self, key: str) -> Optional[str]:
        raw = await self.redis.get(self.prefix + key)
        if raw is None:
            return None
        return raw.decode() if isinstance(raw, bytes) else str(raw)

    async def set(self, key: str, value: str) -> None:
        await self.redis.set(self.prefix + key, value)
