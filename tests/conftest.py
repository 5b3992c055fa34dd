"""
Pytest configuration and fixtures for the attempt engine tests.

Each test gets its own file-backed SQLite database so that concurrent sessions
really run on separate connections.
"""
import sys
import os
import pytest
import pytest_asyncio

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import build_engine, build_session_factory
from models.base import Base
from models.quiz import Quiz, Question, QuestionType, Difficulty
from models import attempt, stats, assignment  # noqa: F401 - register tables


# (question_text, correct_answer, points): five questions worth [1, 1, 2, 1, 1]
JS_QUIZ = [
    ('What does "var" declare in JavaScript?', "A variable", 1),
    ("Which symbol starts a single-line comment in JavaScript?", "//", 1),
    ("What will console.log(typeof null) output?", "object", 2),
    ("JavaScript is a case-sensitive language.", "true", 1),
    ("Which method adds an element to the end of an array?", "push()", 1),
]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def quiz_factory(session_factory):
    """Create a quiz with questions. `rows` is a list of (text, answer, points)."""

    async def _create(rows=JS_QUIZ, total_questions=None, created_by=1):
        async with session_factory() as db:
            quiz = Quiz(
                created_by=created_by,
                title="Basic JavaScript Quiz",
                topic="Programming",
                is_published=True,
                total_questions=len(rows) if total_questions is None else total_questions,
            )
            db.add(quiz)
            await db.flush()
            questions = []
            for index, (text, answer, points) in enumerate(rows, 1):
                question = Question(
                    quiz_id=quiz.id,
                    question_text=text,
                    question_type=QuestionType.SHORT_ANSWER.value,
                    correct_answer=answer,
                    difficulty=Difficulty.EASY.value,
                    points=points,
                    order_index=index,
                )
                db.add(question)
                questions.append(question)
            await db.commit()
            return quiz, questions

    return _create


@pytest.fixture
def sample_answers():
    """Four correct answers (1+1+2+1 points) and one wrong one."""
    return ["A variable", "//", "object", "true", "pop()"]
