from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update
from models.base import utcnow
from models.stats import EngagementMetric
from models.assignment import Assignment
from models.attempt import QuizAttempt
from db.dialect import upsert_insert
from core.config import settings
from core.logger import logger


def engagement_date(completed_at: datetime) -> date:
    """Day bucket of a completion, in the configured metrics timezone."""
    if completed_at.tzinfo is None:
        # SQLite hands timestamps back naive; they are stored as UTC
        completed_at = completed_at.replace(tzinfo=timezone.utc)
    return completed_at.astimezone(ZoneInfo(settings.METRICS_TIMEZONE)).date()


class EngagementService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_engagement(self, user_id: int, day: date, seconds_spent: int, score: int):
        await self._upsert_metric(user_id, day, seconds_spent, score)
        await self.db.commit()

    async def complete_assignment(self, quiz_id: int, user_id: int, completed_at: datetime) -> bool:
        completed = await self._mark_assignment(quiz_id, user_id, completed_at)
        await self.db.commit()
        return completed

    async def record_attempt(self, attempt: QuizAttempt) -> bool:
        """
        Fold one completed attempt into the daily rollup and close any open
        assignment for it. Both writes commit together.
        """
        await self._upsert_metric(
            attempt.user_id,
            engagement_date(attempt.completed_at),
            attempt.time_spent_seconds,
            attempt.score,
        )
        assignment_closed = await self._mark_assignment(attempt.quiz_id, attempt.user_id, attempt.completed_at)
        await self.db.commit()
        return assignment_closed

    async def _upsert_metric(self, user_id: int, day: date, seconds_spent: int, score: int):
        now = utcnow()
        stmt = upsert_insert(self.db, EngagementMetric).values(
            user_id=user_id,
            date=day,
            quizzes_completed=1,
            total_time_spent_seconds=seconds_spent,
            total_score=score,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[EngagementMetric.user_id, EngagementMetric.date],
            set_={
                "quizzes_completed": EngagementMetric.quizzes_completed + 1,
                "total_time_spent_seconds": EngagementMetric.total_time_spent_seconds + seconds_spent,
                "total_score": EngagementMetric.total_score + score,
                "updated_at": now,
            },
        )
        await self.db.execute(stmt)
        logger.info("Engagement recorded", user_id=user_id, date=day.isoformat(), seconds=seconds_spent, score=score)

    async def _mark_assignment(self, quiz_id: int, user_id: int, completed_at: datetime) -> bool:
        result = await self.db.execute(
            update(Assignment)
            .where(
                Assignment.quiz_id == quiz_id,
                Assignment.user_id == user_id,
                Assignment.is_completed == False,
            )
            .values(is_completed=True, completed_at=completed_at)
        )
        completed = result.rowcount > 0
        if completed:
            logger.info("Assignment completed", quiz_id=quiz_id, user_id=user_id)
        return completed
