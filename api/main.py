from fastapi import FastAPI, HTTPException, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, date
from db.session import get_db
from services.attempt_service import AttemptService
from services.stats_service import StatsService
from core.exceptions import QuizEngineError, AttemptNotFound, AnswerNotSaved, CompletionFailed
from core.logger import logger
from utils.middleware import request_context_middleware, quiz_engine_error_handler

# API Documentation
API_DESCRIPTION = """
## Quiz Attempt Engine API

Records answers, finalizes attempts exactly once, and exposes the resulting
scores, profile points/streaks and daily engagement metrics.

### Authentication

Requests are authenticated upstream. The gateway forwards the user id in the
`X-User-Id` header; this service trusts it as-is.

### Idempotency

`POST /api/attempts/{id}/finalize` may be retried freely. Only the first call
completes the attempt; later calls return the stored result with
`already_completed: true`.
"""

TAGS_METADATA = [
    {
        "name": "attempts",
        "description": "Attempt lifecycle - begin, answer, finalize.",
    },
    {
        "name": "stats",
        "description": "Read-only projections for dashboards.",
    },
]

app = FastAPI(
    title="Quiz Attempt Engine API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.middleware("http")(request_context_middleware)
app.add_exception_handler(QuizEngineError, quiz_engine_error_handler)

# === Pydantic Models with Documentation ===

class AttemptCreate(BaseModel):
    """Request body for starting an attempt."""
    quiz_id: int = Field(..., description="Quiz to attempt", ge=1)


class AttemptOut(BaseModel):
    """A freshly created attempt."""
    id: int = Field(..., description="Unique attempt ID")
    quiz_id: int
    status: str = Field(..., description="created, in_progress or completed")
    total_questions: int
    started_at: datetime


class AnswerCreate(BaseModel):
    """Request body for recording one answer."""
    question_id: int = Field(..., ge=1)
    user_answer: str = Field(..., description="Answer as entered or selected", max_length=2000, examples=["Canberra"])
    time_spent_seconds: int = Field(0, description="Seconds spent on this question", ge=0)


class AnswerOut(BaseModel):
    """Stored answer record."""
    id: int
    question_id: int
    user_answer: Optional[str]
    is_correct: bool
    points_earned: int
    time_spent_seconds: int
    answered_at: datetime


class FinalizeRequest(BaseModel):
    """Request body for completing an attempt."""
    total_time_spent_seconds: int = Field(..., description="Total seconds spent on the attempt", ge=0)


class FinalizeOut(BaseModel):
    """Result of finalize; identical for every retry of the same attempt."""
    attempt_id: int
    score: int = Field(..., description="Percentage score, 0-100", ge=0, le=100)
    total_points: int
    correct_answers: int
    total_questions: int
    time_spent_seconds: int
    completed_at: datetime
    already_completed: bool = Field(..., description="True when an earlier call completed the attempt")


class AttemptSummary(BaseModel):
    """Completed attempt in list response."""
    attempt_id: int
    quiz_id: int
    title: str
    score: int
    correct_answers: int
    total_questions: int
    total_points: int
    time_spent_seconds: int
    completed_at: datetime


class AttemptDetail(BaseModel):
    """Attempt with its answer history."""
    id: int
    quiz_id: int
    status: str
    total_questions: int
    started_at: datetime
    completed_at: Optional[datetime]
    score: Optional[int] = Field(None, description="Set once completed")
    correct_answers: Optional[int] = None
    total_points: Optional[int] = None
    time_spent_seconds: int
    answers: List[AnswerOut]


class ProfileOut(BaseModel):
    user_id: int
    points: int
    streak_count: int
    max_streak: int
    quizzes_completed: int


class EngagementOut(BaseModel):
    date: date
    quizzes_completed: int
    total_time_spent_seconds: int
    total_score: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    points: int
    streak: int
    quizzes_completed: int


class ReviewItem(BaseModel):
    """One answered question with its answer key, shown after completion."""
    question_id: int
    order_index: int
    question_text: str
    user_answer: Optional[str]
    is_correct: bool
    points_earned: int
    correct_answer: Optional[str] = Field(None, description="Hidden until the attempt is completed")
    explanation: Optional[str] = Field(None, description="Hidden until the attempt is completed")


class AssignmentOut(BaseModel):
    quiz_id: int
    due_date: Optional[datetime]
    is_completed: bool
    completed_at: Optional[datetime]


def get_current_user(x_user_id: str = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        return int(x_user_id)
    except ValueError:
        logger.warning("Malformed user id header", x_user_id=x_user_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _answer_payload(qa) -> dict:
    return {
        "id": qa.id,
        "question_id": qa.question_id,
        "user_answer": qa.user_answer,
        "is_correct": qa.is_correct,
        "points_earned": qa.points_earned,
        "time_spent_seconds": qa.time_spent_seconds,
        "answered_at": qa.answered_at,
    }


@app.post(
    "/api/attempts",
    response_model=AttemptOut,
    status_code=status.HTTP_201_CREATED,
    tags=["attempts"],
    summary="Begin an attempt",
    responses={
        404: {"description": "Quiz not found"},
        422: {"description": "Quiz cannot be started"},
    },
)
async def begin_attempt(body: AttemptCreate, user_id: int = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    attempt = await AttemptService(db).begin_attempt(user_id, body.quiz_id)
    return {
        "id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "status": attempt.status,
        "total_questions": attempt.total_questions,
        "started_at": attempt.started_at,
    }


@app.post(
    "/api/attempts/{attempt_id}/answers",
    response_model=AnswerOut,
    status_code=status.HTTP_201_CREATED,
    tags=["attempts"],
    summary="Record an answer",
    description="Stores one immutable answer. A question can be answered once per attempt.",
    responses={
        404: {"description": "Attempt not found"},
        409: {"description": "Attempt completed or question already answered"},
        422: {"description": "Question does not belong to the quiz"},
    },
)
async def record_answer(
    attempt_id: int,
    body: AnswerCreate,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        qa = await AttemptService(db).record_answer(
            attempt_id, user_id, body.question_id, body.user_answer, body.time_spent_seconds
        )
    except SQLAlchemyError as e:
        logger.error("Answer write failed", attempt_id=attempt_id, error=str(e))
        raise AnswerNotSaved()
    return _answer_payload(qa)


@app.post(
    "/api/attempts/{attempt_id}/finalize",
    response_model=FinalizeOut,
    tags=["attempts"],
    summary="Finalize an attempt",
    description="Completes the attempt exactly once and returns its score. Safe to retry.",
    responses={
        404: {"description": "Attempt not found"},
        503: {"description": "Completion could not be written"},
    },
)
async def finalize_attempt(
    attempt_id: int,
    body: FinalizeRequest,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await AttemptService(db).finalize(attempt_id, user_id, body.total_time_spent_seconds)
    except SQLAlchemyError as e:
        logger.error("Finalize transition failed", attempt_id=attempt_id, error=str(e))
        raise CompletionFailed()
    # Pending aggregation is not the caller's concern; the attempt is complete
    return {
        "attempt_id": result.attempt_id,
        "score": result.score,
        "total_points": result.total_points,
        "correct_answers": result.correct_answers,
        "total_questions": result.total_questions,
        "time_spent_seconds": result.time_spent_seconds,
        "completed_at": result.completed_at,
        "already_completed": result.already_completed,
    }


@app.get(
    "/api/attempts",
    response_model=List[AttemptSummary],
    tags=["stats"],
    summary="List completed attempts",
)
async def list_attempts(
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await StatsService(db).get_user_attempts(user_id, limit=limit)


@app.get(
    "/api/attempts/{attempt_id}",
    response_model=AttemptDetail,
    tags=["stats"],
    summary="Get attempt with answers",
    responses={404: {"description": "Attempt not found"}},
)
async def get_attempt(attempt_id: int, user_id: int = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    service = StatsService(db)
    attempt = await service.get_attempt(attempt_id, user_id)
    if not attempt:
        raise AttemptNotFound()
    answers = await service.get_question_attempts(attempt_id)
    completed = attempt.is_completed
    return {
        "id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "status": attempt.status,
        "total_questions": attempt.total_questions,
        "started_at": attempt.started_at,
        "completed_at": attempt.completed_at,
        "score": attempt.score if completed else None,
        "correct_answers": attempt.correct_answers if completed else None,
        "total_points": attempt.total_points if completed else None,
        "time_spent_seconds": attempt.time_spent_seconds,
        "answers": [_answer_payload(qa) for qa in answers],
    }


@app.get(
    "/api/attempts/{attempt_id}/review",
    response_model=List[ReviewItem],
    tags=["stats"],
    summary="Review answers against the answer key",
    responses={404: {"description": "Attempt not found"}},
)
async def review_attempt(attempt_id: int, user_id: int = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    review = await StatsService(db).get_attempt_review(attempt_id, user_id)
    if review is None:
        raise AttemptNotFound()
    return review


@app.get("/api/profile", response_model=ProfileOut, tags=["stats"], summary="Get points and streak")
async def get_profile(user_id: int = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    profile = await StatsService(db).get_profile(user_id)
    if not profile:
        # No completed attempt yet
        return {"user_id": user_id, "points": 0, "streak_count": 0, "max_streak": 0, "quizzes_completed": 0}
    return {
        "user_id": profile.user_id,
        "points": profile.points,
        "streak_count": profile.streak_count,
        "max_streak": profile.max_streak,
        "quizzes_completed": profile.quizzes_completed,
    }


@app.get("/api/engagement", response_model=List[EngagementOut], tags=["stats"], summary="Daily engagement rollup")
async def get_engagement(
    start: Optional[date] = None,
    end: Optional[date] = None,
    user_id: int = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    metrics = await StatsService(db).get_engagement_metrics(user_id, start, end)
    return [{
        "date": m.date,
        "quizzes_completed": m.quizzes_completed,
        "total_time_spent_seconds": m.total_time_spent_seconds,
        "total_score": m.total_score,
    } for m in metrics]


@app.get("/api/leaderboard", response_model=List[LeaderboardEntry], tags=["stats"], summary="Top users by points")
async def get_leaderboard(limit: int = Query(50, ge=1, le=200), db: AsyncSession = Depends(get_db)):
    return await StatsService(db).get_leaderboard(limit)


@app.get("/api/assignments", response_model=List[AssignmentOut], tags=["stats"], summary="Assigned quizzes")
async def get_assignments(user_id: int = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    assignments = await StatsService(db).get_assignments(user_id)
    return [{
        "quiz_id": a.quiz_id,
        "due_date": a.due_date,
        "is_completed": a.is_completed,
        "completed_at": a.completed_at,
    } for a in assignments]


@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok"}
