"""
Redis client factory for calendar change pub/sub.

The client is built once by the process bootstrap (see api/main.py) and passed
explicitly to the components that publish or subscribe. Nothing here keeps a
module-level connection.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis import ConnectionError as RedisConnectionError

from shared.config import Settings

logger = logging.getLogger(__name__)


def create_redis_client(settings: Settings) -> "redis.Redis[str]":
    """
    Create a Redis async client with production-ready configuration.

    - Connection pooling (REDIS_MAX_CONNECTIONS)
    - Automatic retry on timeout for transient failures
    - Health check pings every 30 seconds

    Key patterns:
        - Calendar channels: {CALENDAR_CHANNEL_PREFIX}:{business_id}

    Args:
        settings: Application settings

    Returns:
        Redis async client configured with connection pool and retry logic
    """
    try:
        client = redis.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
        )

        logger.info(
            f"Redis client initialized: {settings.REDIS_URL} "
            f"(max_connections={settings.REDIS_MAX_CONNECTIONS}, retry_on_timeout=True, "
            f"health_check_interval=30s)"
        )
        return client

    except RedisConnectionError as e:
        logger.error(
            f"Redis connection failed: {e}. Live calendar updates unavailable.",
            exc_info=True
        )
        raise


async def publish_to_channel(
    client: "redis.Redis[str]", channel: str, message: dict[str, Any]
) -> int:
    """
    Publish a message to a Redis pub/sub channel.

    Args:
        client: Redis client owned by the caller
        channel: Channel name
        message: Message dict to publish (will be JSON-serialized)

    Returns:
        Number of subscribers that received the message

    Raises:
        RedisConnectionError: If Redis is unreachable
    """
    json_message = json.dumps(message, default=str)

    receivers = await client.publish(channel, json_message)

    logger.debug(f"Message published to channel '{channel}': {json_message[:100]}")
    return receivers


async def close_redis_client(client: "redis.Redis[str]") -> None:
    """
    Close Redis connection gracefully.

    Note:
        Should be called during application shutdown.
    """
    try:
        await client.aclose()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning(f"Error closing Redis client: {e}")
