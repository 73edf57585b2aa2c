import asyncio
import logging
import time
from typing import Optional
import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError
from pricegraph.models import PriceSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "prices:latest:snapshot"


class SnapshotStore:
    def __init__(
            self,
            redis_url: str,
            ttl_seconds: int,
            stale_after_seconds: int,
            client: Optional[redis.Redis] = None
    ):
        """Initialize SnapshotStore without connecting to Redis"""
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.stale_after_seconds = stale_after_seconds
        self.redis: Optional[redis.Redis] = client
        self._ready = asyncio.Event()

    async def initialize(self):
        """Initialize Redis connection"""
        try:
            logger.info("Initializing Redis connection")
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True
                )

            # Test connection
            await self.redis.ping()
            self._ready.set()
            logger.info("Redis connection established successfully")
        except Exception as e:
            logger.error(f"Error initializing Redis connection: {str(e)}")
            raise

    async def _ensure_connection(self):
        """Ensure Redis connection is established"""
        if not self._ready.is_set():
            await self.initialize()

    async def save_snapshot(self, snapshot: PriceSnapshot) -> bool:
        """Write a full snapshot, replacing the previous one"""
        try:
            await self._ensure_connection()
            await self.redis.set(SNAPSHOT_KEY, snapshot.model_dump_json(), ex=self.ttl_seconds)
            logger.info(f"Stored price snapshot ({len(snapshot.prices)} tokens) at {snapshot.timestamp:.0f}")
            return True
        except RedisError as e:
            logger.error(f"Error saving price snapshot: {str(e)}")
            return False

    async def get_latest_snapshot(self) -> Optional[PriceSnapshot]:
        """Get the most recent snapshot, or None when nothing usable is stored"""
        try:
            await self._ensure_connection()
            data = await self.redis.get(SNAPSHOT_KEY)
            if not data:
                return None
            return PriceSnapshot.model_validate_json(data)
        except ValidationError as e:
            logger.error(f"Stored snapshot is malformed: {str(e)}")
            return None
        except RedisError as e:
            logger.error(f"Error reading price snapshot: {str(e)}")
            return None

    def age(self, snapshot: PriceSnapshot, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - snapshot.timestamp

    def is_stale(self, snapshot: PriceSnapshot, now: Optional[float] = None) -> bool:
        return self.age(snapshot, now) > self.stale_after_seconds

    async def clear(self):
        """Remove the stored snapshot"""
        await self._ensure_connection()
        await self.redis.delete(SNAPSHOT_KEY)
        logger.info("Cleared stored price snapshot")

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()
