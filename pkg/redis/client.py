from typing import Optional, Any, Union
from datetime import timedelta
import json
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError


class RedisClient:
    """
    Async Redis client with a shared connection pool.
    Values that are not plain scalars are stored as JSON.
    """

    def __init__(self, logger: logging.Logger, host: str = "localhost", port: int = 6379,
                 password: Optional[str] = None, ssl: bool = False):
        self.logger = logger
        self.host = host
        self.port = port
        self.password = password
        self.ssl = ssl
        self._async_redis: Optional[aioredis.Redis] = None

    async def _get_async_redis(self) -> aioredis.Redis:
        """Get or create the async client"""
        if self._async_redis is None:
            self._async_redis = aioredis.Redis(
                host=self.host,
                port=self.port,
                password=self.password,
                ssl=self.ssl,
                decode_responses=True,
                max_connections=20,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
                retry_on_timeout=True,
            )
        return self._async_redis

    async def async_ping(self) -> bool:
        try:
            redis = await self._get_async_redis()
            return bool(await redis.ping())
        except RedisError as e:
            self.logger.error(f"Redis ping failed: {str(e)}")
            return False

    async def async_get_value(self, key: str, default: Any = None) -> Any:
        """
        Get value for a key.

        Returns:
            The value deserialized from JSON when it looks like JSON,
            the raw string otherwise, or ``default`` when missing.
        """
        try:
            redis = await self._get_async_redis()
            value: Optional[str] = await redis.get(key)
            if value is None:
                return default
            try:
                if isinstance(value, str) and (value.startswith('{') or value.startswith('[')):
                    return json.loads(value)
                return value
            except (TypeError, json.JSONDecodeError):
                return value
        except RedisError as e:
            self.logger.error(f"Error async getting key {key}: {str(e)}")
            raise

    async def async_set_value(self, key: str, value: Any, expiry: Optional[Union[int, timedelta]] = None) -> bool:
        """
        Set a key-value pair, optionally with expiry.

        Args:
            key: Key to set
            value: Value to set (JSON serialized if not a scalar)
            expiry: Expiry time in seconds or timedelta
        """
        try:
            redis = await self._get_async_redis()
            if not isinstance(value, (str, int, float, bool)):
                value = json.dumps(value)
            if isinstance(expiry, timedelta):
                expiry = int(expiry.total_seconds())

            if expiry:
                return await redis.setex(key, expiry, value)
            return await redis.set(key, value)
        except RedisError as e:
            self.logger.error(f"Error async setting key {key}: {str(e)}")
            raise

    async def async_close(self) -> None:
        if self._async_redis is not None:
            await self._async_redis.aclose()
            self._async_redis = None
            self.logger.info("Async Redis connection pool closed")
