# app/background_tasks/claim_tasks.py
"""
Background tasks for the claim ledger.

- expire_stale_claims(): every CLAIM_SWEEP_INTERVAL_MINUTES
"""

import logging

import redis

from app.core.exceptions import DropAllocationError
from app.db.redis import get_redis_client
from app.db.session import SessionLocal
from app.services.allocation_service import allocation_service

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "claims:expiry_sweep_lock"
SWEEP_LOCK_TTL_SECONDS = 60


def expire_stale_claims() -> int:
    """
    Background task: mark PENDING claims past their deadline as EXPIRED.

    A Redis lock keeps several workers from sweeping at once. When Redis is
    unreachable the sweep still runs; it is idempotent.

    Returns:
        Number of claims marked EXPIRED
    """
    redis_client = get_redis_client()
    lock_acquired = False

    try:
        lock_acquired = bool(redis_client.set(SWEEP_LOCK_KEY, "1", nx=True, ex=SWEEP_LOCK_TTL_SECONDS))
        if not lock_acquired:
            logger.debug("Claim expiry sweep already running on another worker, skipping")
            return 0
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable for claim sweep lock, sweeping without it: {e}")

    db = SessionLocal()
    try:
        updated = allocation_service.cleanup_expired_claims(db)
        if updated:
            logger.info(f"Claim expiry sweep: {updated} claims expired")
        return updated

    except DropAllocationError as e:
        logger.error(f"Claim expiry sweep failed: {e.message}")
        return 0

    except Exception as e:
        logger.error(f"Error in expire_stale_claims: {str(e)}", exc_info=True)
        db.rollback()
        return 0

    finally:
        db.close()
        if lock_acquired:
            try:
                redis_client.delete(SWEEP_LOCK_KEY)
            except redis.RedisError as e:
                logger.warning(f"Failed to release claim sweep lock: {e}")
