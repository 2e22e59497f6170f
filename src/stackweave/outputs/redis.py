from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
import structlog

from stackweave.outputs.store import StoredOutput

logger = structlog.get_logger()


class RedisOutputStore:
    """Redis-backed output store: one hash per deployment, one field per output."""

    def __init__(
        self,
        redis_url: str,
        max_connections: int = 10,
        redis_client: aioredis.Redis | None = None,
        *,
        key_prefix: str = "stackweave:outputs",
    ) -> None:
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._pool: aioredis.ConnectionPool | None = None
        self._client: aioredis.Redis | None = redis_client

        if redis_client is None:
            self._pool = aioredis.ConnectionPool.from_url(
                redis_url,
                max_connections=max_connections,
                decode_responses=True,
            )

    async def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.Redis(connection_pool=self._pool)
        return self._client

    def _key(self, deployment_id: str) -> str:
        return f"{self._key_prefix}:{deployment_id}"

    async def publish(
        self, deployment_id: str, name: str, value: Any, sensitive: bool = False
    ) -> StoredOutput:
        stored = StoredOutput(name=name, value=value, sensitive=sensitive)
        client = await self._get_client()
        await client.hset(self._key(deployment_id), name, json.dumps(stored.to_dict()))
        logger.debug("output_stored", deployment=deployment_id, output=name, backend="redis")
        return stored

    async def fetch(self, deployment_id: str, name: str) -> StoredOutput | None:
        client = await self._get_client()
        raw = await client.hget(self._key(deployment_id), name)
        if not raw:
            return None
        return StoredOutput.from_dict(name, json.loads(raw))

    async def list(self, deployment_id: str) -> dict[str, StoredOutput]:
        client = await self._get_client()
        entries = await client.hgetall(self._key(deployment_id))
        return {
            name: StoredOutput.from_dict(name, json.loads(raw))
            for name, raw in sorted(entries.items())
        }

    async def delete(self, deployment_id: str) -> None:
        """Forget every output of a deployment."""
        client = await self._get_client()
        await client.delete(self._key(deployment_id))

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.close()
        if self._pool is not None:
            await self._pool.disconnect()
