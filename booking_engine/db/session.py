# booking_engine/db/session.py

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from booking_engine.core.config import settings


def engine_options(url: str) -> dict:
    """Dialect-specific engine settings shared by the app and the test suite."""
    if url.startswith("sqlite"):
        # Writers queue on the file lock instead of failing straight away
        return {"connect_args": {"timeout": 15}}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


# 1) Engine: one per process
engine = create_async_engine(
    settings.async_db_uri,
    echo=settings.DB_ECHO,
    **engine_options(settings.async_db_uri),
)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Appointments are returned to callers after commit
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


# 2) Session factory: short-lived sessions per request or per booking attempt
AsyncSessionLocal = make_session_factory(engine)


# 3) Declarative Base: all models inherit from this
class Base(DeclarativeBase):
    pass


# 4) FastAPI dependencies
async def get_session() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Booking and availability open their own short sessions (parallel reads, retries)."""
    return AsyncSessionLocal
