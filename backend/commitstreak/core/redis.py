import redis.asyncio as aioredis

from commitstreak.config import settings


def create_async_client() -> aioredis.Redis:
    return aioredis.from_url(settings.REDIS_URL, decode_responses=True)


class AsyncRedisClient:
    """Process-wide client for the API's event loop."""

    _client = None

    @classmethod
    def get_client(cls) -> aioredis.Redis:
        if cls._client is None:
            cls._client = create_async_client()
        return cls._client

    @classmethod
    async def close(cls) -> None:
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None


class AsyncRedisLock:
    """
    Redis-based distributed lock shared by API workers and Celery workers.

    Usage:
        async with AsyncRedisLock("streak:user_id", timeout=120):
            # critical section
    """

    def __init__(
        self,
        key: str,
        timeout: int = 120,
        blocking_timeout: int = 30,
        client: aioredis.Redis | None = None,
    ):
        self.key = f"lock:{key}"
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._client = client
        self._lock = None

    async def __aenter__(self):
        redis_client = self._client or AsyncRedisClient.get_client()
        self._lock = redis_client.lock(
            self.key,
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        acquired = await self._lock.acquire(blocking=True)
        if not acquired:
            raise TimeoutError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._lock:
            try:
                await self._lock.release()
            except aioredis.RedisError:
                pass  # Lock may have expired
        return False
