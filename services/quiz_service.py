from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from models.quiz import Quiz, Question

class QuizService:
    """Read access to the authored quiz content. Authoring itself lives elsewhere."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_quiz(self, quiz_id: int) -> Optional[Quiz]:
        result = await self.db.execute(select(Quiz).filter(Quiz.id == quiz_id))
        return result.scalar_one_or_none()

    async def get_questions(self, quiz_id: int) -> List[Question]:
        result = await self.db.execute(
            select(Question).filter(Question.quiz_id == quiz_id).order_by(Question.order_index.asc())
        )
        return result.scalars().all()

    async def get_question(self, question_id: int) -> Optional[Question]:
        result = await self.db.execute(select(Question).filter(Question.id == question_id))
        return result.scalar_one_or_none()

    async def count_questions(self, quiz_id: int) -> int:
        result = await self.db.execute(select(func.count(Question.id)).filter(Question.quiz_id == quiz_id))
        return result.scalar() or 0
