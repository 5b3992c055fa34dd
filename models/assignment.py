from sqlalchemy import Column, Integer, BigInteger, Boolean, DateTime, ForeignKey, UniqueConstraint
from models.base import Base, utcnow

class Assignment(Base):
    __tablename__ = "quiz_assignments"
    __table_args__ = (
        UniqueConstraint("quiz_id", "user_id", name="uq_assignments_quiz_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(BigInteger, index=True, nullable=False)
    assigned_by = Column(BigInteger, nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
