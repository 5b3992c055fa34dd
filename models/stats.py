from sqlalchemy import Column, Integer, BigInteger, Date, DateTime, CheckConstraint, UniqueConstraint, Index
from models.base import Base, TimestampMixin, utcnow

class Profile(Base, TimestampMixin):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("streak_count >= 0", name="ck_profiles_streak_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, unique=True, index=True, nullable=False)
    points = Column(Integer, default=0, nullable=False)
    streak_count = Column(Integer, default=0, nullable=False)
    max_streak = Column(Integer, default=0, nullable=False)
    quizzes_completed = Column(Integer, default=0, nullable=False)
    last_activity = Column(DateTime(timezone=True), default=utcnow)

class EngagementMetric(Base, TimestampMixin):
    __tablename__ = "user_engagement_metrics"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_engagement_user_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, nullable=False)
    date = Column(Date, nullable=False)
    quizzes_completed = Column(Integer, default=0, nullable=False)
    total_time_spent_seconds = Column(Integer, default=0, nullable=False)
    total_score = Column(Integer, default=0, nullable=False)  # sum, not average

# Indexes for per-day dashboard queries
Index("idx_engagement_date", EngagementMetric.date)
