from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_insert(db: AsyncSession, model):
    """
    Return an INSERT construct supporting ON CONFLICT for the session's dialect.

    PostgreSQL is the production store; SQLite is used by the test suite.
    Both expose the same on_conflict_do_update() signature.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Atomic upsert is not supported on dialect {dialect!r}")
