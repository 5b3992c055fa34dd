from redis.asyncio import Redis
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from core.config import settings


def build_engine(url: str = None, echo: bool = False) -> AsyncEngine:
    """asyncpg pool in production; SQLite (aiosqlite) gets its dialect's default pool."""
    url = url or settings.DATABASE_URL
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Services commit explicitly and keep using loaded rows afterwards
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


def redis_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)
