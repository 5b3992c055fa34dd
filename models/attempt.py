import enum

from sqlalchemy import Column, Integer, BigInteger, String, Text, Boolean, DateTime, ForeignKey, CheckConstraint, UniqueConstraint, Index
from models.base import Base, TimestampMixin, utcnow


class AttemptStatus(str, enum.Enum):
    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class QuizAttempt(Base, TimestampMixin):
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        CheckConstraint("total_questions > 0", name="ck_quiz_attempts_total_positive"),
        CheckConstraint(
            "correct_answers >= 0 AND correct_answers <= total_questions",
            name="ck_quiz_attempts_correct_range",
        ),
        CheckConstraint("score >= 0 AND score <= 100", name="ck_quiz_attempts_score_range"),
        CheckConstraint("time_spent_seconds >= 0", name="ck_quiz_attempts_time_non_negative"),
        Index("idx_attempts_user_completed", "user_id", "completed_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, index=True, nullable=False)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), index=True, nullable=False)
    status = Column(String(20), default=AttemptStatus.CREATED.value, nullable=False)

    # Copied from the quiz when the attempt is created, never changes afterwards
    total_questions = Column(Integer, nullable=False)

    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Valid only once completed_at is set
    score = Column(Integer, default=0, nullable=False)
    correct_answers = Column(Integer, default=0, nullable=False)
    total_points = Column(Integer, default=0, nullable=False)
    time_spent_seconds = Column(Integer, default=0, nullable=False)

    @property
    def state(self) -> AttemptStatus:
        return AttemptStatus(self.status)

    @property
    def is_completed(self) -> bool:
        return self.state is AttemptStatus.COMPLETED


class QuestionAttempt(Base):
    __tablename__ = "question_attempts"
    __table_args__ = (
        UniqueConstraint("quiz_attempt_id", "question_id", name="uq_question_attempts_attempt_question"),
        CheckConstraint("points_earned >= 0", name="ck_question_attempts_points_non_negative"),
        CheckConstraint("time_spent_seconds >= 0", name="ck_question_attempts_time_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    quiz_attempt_id = Column(Integer, ForeignKey("quiz_attempts.id", ondelete="CASCADE"), index=True, nullable=False)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    user_answer = Column(Text, nullable=True)
    is_correct = Column(Boolean, default=False, nullable=False)
    points_earned = Column(Integer, default=0, nullable=False)
    time_spent_seconds = Column(Integer, default=0, nullable=False)
    answered_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AttemptAggregation(Base, TimestampMixin):
    """
    Outbox row written in the same transaction that completes an attempt.
    Each aggregation step stamps its column exactly once.
    """
    __tablename__ = "attempt_aggregations"
    __table_args__ = (
        Index("idx_aggregations_pending", "account_applied_at", "engagement_applied_at"),
    )

    attempt_id = Column(Integer, ForeignKey("quiz_attempts.id", ondelete="CASCADE"), primary_key=True)
    account_applied_at = Column(DateTime(timezone=True), nullable=True)
    engagement_applied_at = Column(DateTime(timezone=True), nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    # Earliest time the reconciler picks the row up again; NULL means now
    next_retry_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_pending(self) -> bool:
        return self.account_applied_at is None or self.engagement_applied_at is None
