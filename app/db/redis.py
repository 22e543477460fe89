# app/db/redis.py
import redis
from app.core.config import settings

# One pool per process; clients borrowed from it are cheap to create.
redis_pool = redis.ConnectionPool.from_url(settings.REDIS_URL, decode_responses=True)


def get_redis_client() -> redis.Redis:
    """
    Creates a Redis client backed by the shared connection pool.
    Used by background jobs that run outside a request.
    """
    return redis.Redis(connection_pool=redis_pool)
