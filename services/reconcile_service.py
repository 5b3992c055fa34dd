import uuid
from typing import Optional
from redis.asyncio import Redis

from core.logger import logger
from core.config import settings
from db.session import AsyncSessionLocal
from services.aggregation_service import AggregationService

# Delete the lease only while it still holds our token
RELEASE_LEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


async def release_lease(redis: Redis, token: str) -> bool:
    released = await redis.eval(RELEASE_LEASE_SCRIPT, 1, settings.RECONCILE_LOCK_KEY, token)
    if not released:
        logger.warning("Reconciliation lease expired before release", ttl=settings.RECONCILE_LOCK_TTL_SECONDS)
    return bool(released)


async def run_reconciliation(redis: Optional[Redis] = None, session_factory=AsyncSessionLocal) -> Optional[dict]:
    """
    Periodic job: re-apply aggregation steps left pending by failed finalizes.

    With Redis available only one replica scans per interval. Skipping the
    lease is safe since every step is claimed atomically in the database.
    """
    token = None
    if redis is not None:
        token = uuid.uuid4().hex
        acquired = await redis.set(
            settings.RECONCILE_LOCK_KEY, token, nx=True, ex=settings.RECONCILE_LOCK_TTL_SECONDS
        )
        if not acquired:
            logger.debug("Reconciliation skipped: lease held by another worker")
            return None

    try:
        async with session_factory() as db:
            service = AggregationService(db)
            pending = await service.pending_count()
            if not pending:
                return {"processed": 0, "failed": 0}
            logger.info("Reconciliation: pending aggregations found", pending=pending)
            return await service.reconcile_pending()
    finally:
        if token is not None:
            await release_lease(redis, token)
