from datetime import date
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from models.attempt import QuizAttempt, QuestionAttempt, AttemptStatus
from models.stats import Profile, EngagementMetric
from models.assignment import Assignment
from models.quiz import Quiz, Question
from core.config import settings

class StatsService:
    """Read-only projections for dashboards. Abandoned attempts never show up here."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_profile(self, user_id: int) -> Optional[Profile]:
        result = await self.db.execute(
            select(Profile).filter(Profile.user_id == user_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_attempt(self, attempt_id: int, user_id: int) -> Optional[QuizAttempt]:
        result = await self.db.execute(
            select(QuizAttempt)
            .filter(QuizAttempt.id == attempt_id, QuizAttempt.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_question_attempts(self, attempt_id: int) -> List[QuestionAttempt]:
        result = await self.db.execute(
            select(QuestionAttempt)
            .filter(QuestionAttempt.quiz_attempt_id == attempt_id)
            .order_by(QuestionAttempt.answered_at.asc(), QuestionAttempt.id.asc())
        )
        return result.scalars().all()

    async def get_attempt_review(self, attempt_id: int, user_id: int) -> Optional[List[dict]]:
        """
        Answers joined with their questions in presentation order.

        The answer key (correct_answer, explanation) is only filled in once the
        attempt is completed. Returns None for an unknown attempt.
        """
        attempt = await self.get_attempt(attempt_id, user_id)
        if not attempt:
            return None
        reveal = attempt.is_completed

        query = (
            select(QuestionAttempt, Question)
            .join(Question, Question.id == QuestionAttempt.question_id)
            .filter(QuestionAttempt.quiz_attempt_id == attempt_id)
            .order_by(Question.order_index.asc())
        )
        rows = (await self.db.execute(query)).all()

        return [{
            "question_id": question.id,
            "order_index": question.order_index,
            "question_text": question.question_text,
            "user_answer": qa.user_answer,
            "is_correct": qa.is_correct,
            "points_earned": qa.points_earned,
            "correct_answer": question.correct_answer if reveal else None,
            "explanation": question.explanation if reveal else None,
        } for qa, question in rows]

    async def get_user_attempts(self, user_id: int, limit: int = 50) -> List[dict]:
        """Completed attempts, newest first, with the quiz title joined in."""
        query = (
            select(QuizAttempt, Quiz.title)
            .outerjoin(Quiz, Quiz.id == QuizAttempt.quiz_id)
            .filter(
                QuizAttempt.user_id == user_id,
                QuizAttempt.status == AttemptStatus.COMPLETED.value,
            )
            .order_by(desc(QuizAttempt.completed_at), desc(QuizAttempt.id))
            .limit(limit)
        )
        rows = (await self.db.execute(query)).all()

        return [{
            "attempt_id": attempt.id,
            "quiz_id": attempt.quiz_id,
            "title": title or "Deleted quiz",
            "score": attempt.score,
            "correct_answers": attempt.correct_answers,
            "total_questions": attempt.total_questions,
            "total_points": attempt.total_points,
            "time_spent_seconds": attempt.time_spent_seconds,
            "completed_at": attempt.completed_at,
        } for attempt, title in rows]

    async def get_engagement_metrics(
        self,
        user_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[EngagementMetric]:
        query = select(EngagementMetric).filter(EngagementMetric.user_id == user_id)
        if start:
            query = query.filter(EngagementMetric.date >= start)
        if end:
            query = query.filter(EngagementMetric.date <= end)
        result = await self.db.execute(
            query.order_by(EngagementMetric.date.asc()).execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_leaderboard(self, limit: int = None) -> List[dict]:
        limit = limit or settings.LEADERBOARD_LIMIT
        query = (
            select(Profile.user_id, Profile.points, Profile.streak_count, Profile.quizzes_completed)
            .order_by(desc(Profile.points), Profile.id.asc())
            .limit(limit)
        )
        rows = (await self.db.execute(query)).all()

        return [{
            "rank": i,
            "user_id": row.user_id,
            "points": row.points,
            "streak": row.streak_count,
            "quizzes_completed": row.quizzes_completed,
        } for i, row in enumerate(rows, 1)]

    async def get_assignments(self, user_id: int) -> List[Assignment]:
        result = await self.db.execute(
            select(Assignment)
            .filter(Assignment.user_id == user_id)
            .order_by(Assignment.is_completed.asc(), Assignment.due_date.asc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()
