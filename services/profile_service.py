from dataclasses import dataclass
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import case, update
from models.base import utcnow
from models.stats import Profile
from db.dialect import upsert_insert
from core.config import settings
from core.logger import logger


@dataclass(frozen=True)
class ProfileDelta:
    new_points: int
    new_streak: int


class ProfileService:
    """
    Account aggregator. Every mutation is a single storage-level statement so
    concurrent completions for the same user never lose an update.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def apply_attempt_result(self, user_id: int, points_delta: int, score_for_streak: int) -> ProfileDelta:
        if points_delta < 0:
            raise ValueError("points_delta must not be negative")

        now = utcnow()
        extends_streak = score_for_streak >= settings.STREAK_SCORE_THRESHOLD

        if extends_streak:
            next_streak = Profile.streak_count + 1
            next_max = case(
                (Profile.streak_count + 1 > Profile.max_streak, Profile.streak_count + 1),
                else_=Profile.max_streak,
            )
        else:
            next_streak = 0
            next_max = Profile.max_streak

        # First completion creates the profile row; later ones increment it in place
        stmt = upsert_insert(self.db, Profile).values(
            user_id=user_id,
            points=points_delta,
            streak_count=1 if extends_streak else 0,
            max_streak=1 if extends_streak else 0,
            quizzes_completed=1,
            last_activity=now,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Profile.user_id],
            set_={
                "points": Profile.points + points_delta,
                "streak_count": next_streak,
                "max_streak": next_max,
                "quizzes_completed": Profile.quizzes_completed + 1,
                "last_activity": now,
                "updated_at": now,
            },
        ).returning(Profile.points, Profile.streak_count)

        row = (await self.db.execute(stmt)).one()
        await self.db.commit()

        logger.info(
            "Profile updated",
            user_id=user_id,
            points_delta=points_delta,
            points=row.points,
            streak=row.streak_count,
        )
        return ProfileDelta(new_points=row.points, new_streak=row.streak_count)

    async def correct_points(self, user_id: int, delta: int, reason: str) -> bool:
        """Admin correction; the only path allowed to lower a user's points."""
        result = await self.db.execute(
            update(Profile)
            .where(Profile.user_id == user_id)
            .values(
                points=case((Profile.points + delta < 0, 0), else_=Profile.points + delta),
                updated_at=utcnow(),
            )
        )
        await self.db.commit()
        success = result.rowcount > 0
        logger.warning("Profile points corrected", user_id=user_id, delta=delta, reason=reason, success=success)
        return success
