from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from adrotator.config import settings


def install_sqlite_pragmas(target: AsyncEngine) -> None:
    @event.listens_for(target.sync_engine, "connect")
    def sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA busy_timeout=5000;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()


engine = create_async_engine(settings.database_url, pool_pre_ping=True)
if settings.database_url.startswith("sqlite"):
    install_sqlite_pragmas(engine)

SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def db_session(factory: async_sessionmaker[AsyncSession] | None = None):
    session = (factory or SessionLocal)()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def create_tables(target: AsyncEngine | None = None) -> None:
    from adrotator.models import Base

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
