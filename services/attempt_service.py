from dataclasses import dataclass
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from models.base import utcnow
from models.attempt import QuizAttempt, QuestionAttempt, AttemptAggregation, AttemptStatus
from services.quiz_service import QuizService
from services.scoring import score_attempt, is_answer_correct
from services.aggregation_service import AggregationService
from core.exceptions import (
    AttemptNotFound,
    AttemptNotActive,
    DuplicateAnswer,
    QuizMismatch,
    QuizNotFound,
    QuizNotPlayable,
    AggregationFailure,
)
from core.logger import logger


@dataclass(frozen=True)
class FinalizeResult:
    attempt_id: int
    score: int
    total_points: int
    correct_answers: int
    total_questions: int
    time_spent_seconds: int
    completed_at: datetime
    already_completed: bool = False
    aggregation_pending: bool = False


class AttemptService:
    """
    Attempt lifecycle: Created -> InProgress -> Completed.

    The Completed transition is one conditional UPDATE on completed_at IS NULL;
    whichever caller flips it first scores the attempt and triggers
    aggregation, every later caller gets the stored result back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def begin_attempt(self, user_id: int, quiz_id: int) -> QuizAttempt:
        quiz_service = QuizService(self.db)
        quiz = await quiz_service.get_quiz(quiz_id)
        if not quiz:
            raise QuizNotFound()

        question_count = await quiz_service.count_questions(quiz_id)
        if quiz.total_questions <= 0 or question_count != quiz.total_questions:
            logger.warning(
                "Quiz not playable",
                quiz_id=quiz_id,
                total_questions=quiz.total_questions,
                question_count=question_count,
            )
            raise QuizNotPlayable()

        attempt = QuizAttempt(
            user_id=user_id,
            quiz_id=quiz_id,
            status=AttemptStatus.CREATED.value,
            total_questions=quiz.total_questions,
            started_at=utcnow(),
        )
        self.db.add(attempt)
        await self.db.commit()
        await self.db.refresh(attempt)
        logger.info("Quiz attempt created", user_id=user_id, quiz_id=quiz_id, attempt_id=attempt.id)
        return attempt

    async def get_attempt(self, attempt_id: int, user_id: int) -> QuizAttempt:
        result = await self.db.execute(
            select(QuizAttempt)
            .filter(QuizAttempt.id == attempt_id, QuizAttempt.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        attempt = result.scalar_one_or_none()
        if not attempt:
            raise AttemptNotFound()
        return attempt

    async def record_answer(
        self,
        attempt_id: int,
        user_id: int,
        question_id: int,
        user_answer: str,
        time_spent_seconds: int,
    ) -> QuestionAttempt:
        if time_spent_seconds < 0:
            raise ValueError("time_spent_seconds must not be negative")

        attempt = await self.get_attempt(attempt_id, user_id)
        if attempt.is_completed:
            raise AttemptNotActive()

        question = await QuizService(self.db).get_question(question_id)
        if not question or question.quiz_id != attempt.quiz_id:
            raise QuizMismatch()

        is_correct = is_answer_correct(user_answer, question.correct_answer)

        # Guarded Created/InProgress -> InProgress; also locks the attempt row
        # so a concurrent finalize waits for this answer to commit
        transition = await self.db.execute(
            update(QuizAttempt)
            .where(
                QuizAttempt.id == attempt_id,
                QuizAttempt.status.in_([AttemptStatus.CREATED.value, AttemptStatus.IN_PROGRESS.value]),
            )
            .values(status=AttemptStatus.IN_PROGRESS.value, updated_at=utcnow())
        )
        if transition.rowcount == 0:
            await self.db.rollback()
            raise AttemptNotActive()

        question_attempt = QuestionAttempt(
            quiz_attempt_id=attempt_id,
            question_id=question_id,
            user_answer=user_answer,
            is_correct=is_correct,
            points_earned=question.points if is_correct else 0,
            time_spent_seconds=time_spent_seconds,
            answered_at=utcnow(),
        )
        self.db.add(question_attempt)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Duplicate answer rejected", attempt_id=attempt_id, question_id=question_id)
            raise DuplicateAnswer()

        logger.info(
            "Answer recorded",
            attempt_id=attempt_id,
            question_id=question_id,
            is_correct=is_correct,
            points=question_attempt.points_earned,
        )
        return question_attempt

    async def finalize(self, attempt_id: int, user_id: int, total_time_spent_seconds: int) -> FinalizeResult:
        if total_time_spent_seconds < 0:
            raise ValueError("total_time_spent_seconds must not be negative")

        now = utcnow()
        transition = await self.db.execute(
            update(QuizAttempt)
            .where(
                QuizAttempt.id == attempt_id,
                QuizAttempt.user_id == user_id,
                QuizAttempt.completed_at.is_(None),
            )
            .values(
                status=AttemptStatus.COMPLETED.value,
                completed_at=now,
                time_spent_seconds=total_time_spent_seconds,
                updated_at=now,
            )
        )
        if transition.rowcount == 0:
            await self.db.rollback()
            attempt = await self.get_attempt(attempt_id, user_id)
            logger.info("Finalize replayed on completed attempt", attempt_id=attempt_id, user_id=user_id)
            return await self._stored_result(attempt)

        # Score strictly from what has been persisted, inside the same transaction
        attempt = (await self.db.execute(
            select(QuizAttempt)
            .filter(QuizAttempt.id == attempt_id)
            .execution_options(populate_existing=True)
        )).scalar_one()
        answers = (await self.db.execute(
            select(QuestionAttempt).filter(QuestionAttempt.quiz_attempt_id == attempt_id)
        )).scalars().all()
        result = score_attempt(attempt.total_questions, answers)

        attempt.score = result.percent_score
        attempt.correct_answers = result.correct_answers
        attempt.total_points = result.total_points
        self.db.add(AttemptAggregation(attempt_id=attempt_id))
        await self.db.commit()

        logger.info(
            "Attempt finalized",
            attempt_id=attempt_id,
            user_id=user_id,
            score=result.percent_score,
            correct=result.correct_answers,
            total=attempt.total_questions,
            points=result.total_points,
        )

        aggregation_pending = False
        try:
            await AggregationService(self.db).process(attempt_id)
        except AggregationFailure as e:
            # Completion stands; reconciliation picks the pending steps up
            aggregation_pending = True
            logger.warning("Aggregation deferred", attempt_id=attempt_id, steps=e.failed_steps)

        return FinalizeResult(
            attempt_id=attempt_id,
            score=result.percent_score,
            total_points=result.total_points,
            correct_answers=result.correct_answers,
            total_questions=attempt.total_questions,
            time_spent_seconds=total_time_spent_seconds,
            completed_at=attempt.completed_at,
            aggregation_pending=aggregation_pending,
        )

    async def _stored_result(self, attempt: QuizAttempt) -> FinalizeResult:
        pending = await AggregationService(self.db).is_pending(attempt.id)
        return FinalizeResult(
            attempt_id=attempt.id,
            score=attempt.score,
            total_points=attempt.total_points,
            correct_answers=attempt.correct_answers,
            total_questions=attempt.total_questions,
            time_spent_seconds=attempt.time_spent_seconds,
            completed_at=attempt.completed_at,
            already_completed=True,
            aggregation_pending=pending,
        )
