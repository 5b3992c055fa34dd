from datetime import datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, or_, func
from models.base import utcnow
from models.attempt import QuizAttempt, AttemptAggregation
from services.profile_service import ProfileService
from services.engagement_service import EngagementService
from core.config import settings
from core.exceptions import AggregationFailure
from core.logger import logger

ACCOUNT_STEP = "account"
ENGAGEMENT_STEP = "engagement"

_STEP_COLUMNS = {
    ACCOUNT_STEP: AttemptAggregation.account_applied_at,
    ENGAGEMENT_STEP: AttemptAggregation.engagement_applied_at,
}


def retry_delay(retry_count: int) -> timedelta:
    """Exponential backoff for the reconciler, capped but never infinite."""
    base = settings.RECONCILE_BACKOFF_BASE_SECONDS
    cap = settings.RECONCILE_BACKOFF_MAX_SECONDS
    # Bound the exponent so large counts do not build huge integers
    return timedelta(seconds=min(base * 2 ** min(retry_count, 32), cap))


class AggregationService:
    """
    Applies the account and engagement effects of a completed attempt.

    Each step claims its outbox column and applies its aggregate in one
    transaction, so re-running a step after a crash or a retry is a no-op
    once it has committed. Failed rows are retried with backoff until they
    succeed; nothing is dropped.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def process(self, attempt_id: int) -> List[str]:
        """Run every pending step. Returns the steps applied by this call."""
        applied = []
        errors = {}
        for step in (ACCOUNT_STEP, ENGAGEMENT_STEP):
            try:
                if await self._run_step(attempt_id, step):
                    applied.append(step)
            except Exception as e:
                await self.db.rollback()
                logger.error("Aggregation step failed", attempt_id=attempt_id, step=step, error=str(e))
                errors[step] = e

        if errors:
            await self._record_failure(attempt_id, errors)
            raise AggregationFailure(attempt_id, list(errors))
        return applied

    async def _run_step(self, attempt_id: int, step: str) -> bool:
        column = _STEP_COLUMNS[step]
        now = utcnow()
        claim = await self.db.execute(
            update(AttemptAggregation)
            .where(AttemptAggregation.attempt_id == attempt_id, column.is_(None))
            .values({column.key: now, "updated_at": now})
        )
        if claim.rowcount == 0:
            # Already applied by an earlier run
            await self.db.rollback()
            return False

        result = await self.db.execute(
            select(QuizAttempt)
            .filter(QuizAttempt.id == attempt_id)
            .execution_options(populate_existing=True)
        )
        attempt = result.scalar_one()

        # Both services commit, which also commits the claim above
        if step == ACCOUNT_STEP:
            await ProfileService(self.db).apply_attempt_result(
                attempt.user_id, attempt.total_points, attempt.score
            )
        else:
            await EngagementService(self.db).record_attempt(attempt)

        logger.info("Aggregation step applied", attempt_id=attempt_id, step=step)
        return True

    async def _record_failure(self, attempt_id: int, errors: Dict[str, Exception]):
        """One failed pass counts as one retry, however many steps failed."""
        try:
            row = (await self.db.execute(
                select(AttemptAggregation)
                .filter(AttemptAggregation.attempt_id == attempt_id)
                .execution_options(populate_existing=True)
            )).scalar_one()
            now = utcnow()
            row.retry_count += 1
            row.last_error = "; ".join(f"{step}: {error}" for step, error in errors.items())[:1000]
            row.next_retry_at = now + retry_delay(row.retry_count - 1)
            row.updated_at = now
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("Could not record aggregation failure", attempt_id=attempt_id, steps=list(errors))
            return

        if row.retry_count >= settings.RECONCILE_ALERT_AFTER_RETRIES:
            logger.error(
                "Aggregation still failing",
                attempt_id=attempt_id,
                retry_count=row.retry_count,
                next_retry_at=row.next_retry_at.isoformat(),
                last_error=row.last_error,
            )

    async def is_pending(self, attempt_id: int) -> bool:
        result = await self.db.execute(
            select(AttemptAggregation).filter(AttemptAggregation.attempt_id == attempt_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return row is not None and row.is_pending

    async def pending_count(self) -> int:
        result = await self.db.execute(
            select(func.count(AttemptAggregation.attempt_id)).filter(self._pending_clause())
        )
        return result.scalar() or 0

    async def reconcile_pending(self, limit: int = None, now: Optional[datetime] = None) -> Dict[str, int]:
        """Retry pending steps whose backoff has elapsed, oldest completions first."""
        limit = limit or settings.RECONCILE_BATCH_SIZE
        now = now or utcnow()
        result = await self.db.execute(
            select(AttemptAggregation.attempt_id)
            .filter(
                self._pending_clause(),
                or_(AttemptAggregation.next_retry_at.is_(None), AttemptAggregation.next_retry_at <= now),
            )
            .order_by(AttemptAggregation.created_at.asc())
            .limit(limit)
        )
        attempt_ids = result.scalars().all()
        # Release the read transaction before per-attempt writes
        await self.db.commit()

        processed = 0
        failed = 0
        for attempt_id in attempt_ids:
            try:
                await self.process(attempt_id)
                processed += 1
            except AggregationFailure as e:
                failed += 1
                logger.warning("Reconciliation left attempt pending", attempt_id=attempt_id, steps=e.failed_steps)

        if attempt_ids:
            logger.info("Reconciliation pass finished", processed=processed, failed=failed)
        return {"processed": processed, "failed": failed}

    async def retry_now(self) -> int:
        """Clear the backoff on every pending row so the next pass picks them all up."""
        result = await self.db.execute(
            update(AttemptAggregation)
            .where(self._pending_clause(), AttemptAggregation.next_retry_at.is_not(None))
            .values(next_retry_at=None, updated_at=utcnow())
        )
        await self.db.commit()
        logger.info("Aggregation backoff cleared", rows=result.rowcount)
        return result.rowcount

    @staticmethod
    def _pending_clause():
        return or_(
            AttemptAggregation.account_applied_at.is_(None),
            AttemptAggregation.engagement_applied_at.is_(None),
        )
