from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from typing import Awaitable, Callable, Optional, Sequence, TypeVar
import logging
from .config import settings
from .exceptions import TransactionAborted
from .utils.retry import retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


def enable_sqlite_write_locking(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first write, which lets two readers race
    to upgrade their locks and fail with "database is locked". Emitting
    BEGIN IMMEDIATE ourselves serialises writers on the database lock instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create the async engine with settings suited to the backend"""
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=settings.debug, **kwargs)
        enable_sqlite_write_locking(engine)
        return engine

    return create_async_engine(
        database_url,
        echo=settings.debug,
        pool_size=20,
        max_overflow=30,
        pool_pre_ping=True,
        pool_recycle=3600,
        **kwargs,
    )


# Create async engine
engine = build_engine(settings.database_url)

# Create session maker
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# Dependency to get database session
async def get_db() -> AsyncSession:
    """Dependency that provides database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            await session.close()


_TRANSIENT_SQLSTATES = {"40001", "40P01"}  # serialization_failure, deadlock_detected


def is_transient_error(error: DBAPIError) -> bool:
    """True when the store aborted the transaction and a rerun may succeed"""
    if isinstance(error, OperationalError) or error.connection_invalidated:
        return True
    return getattr(error.orig, "pgcode", None) in _TRANSIENT_SQLSTATES


def violates_unique(error: IntegrityError, name: str, table: str, columns: Sequence[str]) -> bool:
    """True when ``error`` is a duplicate on the unique index ``name``.

    PostgreSQL reports the constraint name; SQLite only lists the columns.
    """
    message = str(error.orig)
    if name in message:
        return True
    return "UNIQUE constraint failed: " + ", ".join(f"{table}.{column}" for column in columns) in message


async def run_transaction(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    operation: str,
    on_integrity_error: Optional[Callable[[IntegrityError], Optional[Exception]]] = None,
) -> T:
    """Run ``work`` as one all-or-nothing transaction on ``db``.

    Commits when ``work`` returns and rolls back on any error, so no partial
    mutation survives a failed attempt. Store-level aborts become
    ``TransactionAborted`` and the whole unit is rerun per the booking retry
    policy; domain errors propagate untouched and are never retried.
    """

    async def attempt() -> T:
        try:
            result = await work()
            await db.commit()
            return result
        except IntegrityError as e:
            await db.rollback()
            mapped = on_integrity_error(e) if on_integrity_error is not None else None
            if mapped is not None:
                raise mapped from e
            raise
        except DBAPIError as e:
            await db.rollback()
            if is_transient_error(e):
                raise TransactionAborted(details={"operation": operation}) from e
            raise
        except Exception:
            await db.rollback()
            raise

    return await retry_async(
        attempt,
        max_retries=settings.booking_max_retries,
        retry_delay=settings.booking_retry_delay,
        retry_on=(TransactionAborted,),
        operation=operation,
    )


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create tables that don't exist yet"""
    # Import models so they register on Base.metadata
    from .models import booking, pickup_point, profile, rating, ride  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Health check function
async def check_database_health() -> bool:
    """Check if database is healthy"""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
