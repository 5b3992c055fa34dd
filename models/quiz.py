import enum

from sqlalchemy import Column, Integer, BigInteger, String, Text, JSON, Boolean, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


class Difficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Quiz(Base, TimestampMixin):
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True, index=True)
    created_by = Column(BigInteger, index=True, nullable=False)
    title = Column(String(255), nullable=False)
    topic = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=True)
    is_published = Column(Boolean, default=False, nullable=False)
    # Fixed at publish time; attempts copy it on creation
    total_questions = Column(Integer, default=0, nullable=False)

    questions = relationship("Question", back_populates="quiz", order_by="Question.order_index")


class Question(Base, TimestampMixin):
    __tablename__ = "questions"
    __table_args__ = (
        UniqueConstraint("quiz_id", "order_index", name="uq_questions_quiz_order"),
        CheckConstraint("points > 0", name="ck_questions_points_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(20), default=QuestionType.MULTIPLE_CHOICE.value, nullable=False)
    options = Column(JSON, nullable=True)  # multiple_choice only
    correct_answer = Column(Text, nullable=False)
    explanation = Column(Text, nullable=True)
    difficulty = Column(String(10), default=Difficulty.MEDIUM.value, nullable=False)
    points = Column(Integer, default=1, nullable=False)
    order_index = Column(Integer, nullable=False)

    quiz = relationship("Quiz", back_populates="questions")
