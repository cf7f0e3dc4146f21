# meraki/services/redis_store.py
"""
Redis-backed local store.
Lets several service replicas share one durable slot set and survive container restarts.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from meraki.core.errors import StorageError
from meraki.services.local_store import LocalStore

logger = logging.getLogger(__name__)


class RedisLocalStore(LocalStore):

    def __init__(self, client: redis.Redis, prefix: str = "meraki:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "meraki:") -> "RedisLocalStore":
        # For Upstash, convert redis:// to rediss:// for TLS
        if "upstash.io" in url and url.startswith("redis://"):
            url = "rediss://" + url[len("redis://"):]

        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def init(self) -> None:
        try:
            await self.client.ping()
        except RedisError as e:
            raise StorageError(f"Redis unavailable: {e}") from e

    async def read(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(self._key(key))
        except RedisError as e:
            raise StorageError(f"Could not read slot {key}: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Slot %s holds invalid JSON, treating as empty", key)
            return None

    async def write(self, key: str, value: Any) -> None:
        try:
            await self.client.set(self._key(key), json.dumps(value))
        except RedisError as e:
            raise StorageError(f"Could not write slot {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as e:
            raise StorageError(f"Could not delete slot {key}: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()
