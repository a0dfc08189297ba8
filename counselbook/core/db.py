import logging
from contextlib import asynccontextmanager
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from .config import settings
from .base import Base
from .errors import DomainError, Internal

log = logging.getLogger("db")

MODEL_MODULES = (
    "counselbook.modules.identity.models",
    "counselbook.modules.catalogs.models",
    "counselbook.modules.slots.models",
    "counselbook.modules.cases.models",
    "counselbook.modules.history.models",
    "counselbook.modules.events.outbox",
)

def load_models():
    import importlib
    for name in MODEL_MODULES:
        importlib.import_module(name)
    return Base.metadata

def configure_sqlite(engine: AsyncEngine, begin: str = "BEGIN"):
    # pysqlite/aiosqlite emit BEGIN lazily, which breaks SAVEPOINT; take it over.
    # "BEGIN IMMEDIATE" serialises writers on a shared database file.
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql(begin)

def make_engine(dsn: str, *, sqlite_begin: str = "BEGIN", **kw) -> AsyncEngine:
    if dsn.startswith("sqlite"):
        eng = create_async_engine(dsn, **kw)
        configure_sqlite(eng, sqlite_begin)
        return eng
    return create_async_engine(dsn, pool_pre_ping=True, **kw)

engine = make_engine(settings.DATABASE_DSN)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

@asynccontextmanager
async def transaction(session: AsyncSession):
    """Commit on success; roll back on any error so nothing partial is visible."""
    try:
        yield session
        await session.commit()
    except DomainError:
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        log.exception("Transaction rolled back after storage failure")
        raise Internal("Storage failure, nothing was saved") from e
    except BaseException:
        await session.rollback()
        raise

async def init_models(bind: AsyncEngine | None = None):
    ## In dev-only "create_all" mode build the schema; otherwise migrations own it.
    if settings.DB_MANAGE.lower() == "create_all":
        metadata = load_models()
        async with (bind or engine).begin() as conn:
            await conn.run_sync(metadata.create_all)
