from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import text
from . import config
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()

engine = None
AsyncSessionFactory = None


def configure_engine(database_url: str = config.DATABASE_URL, **engine_kwargs):
    """Creates the async engine and session factory used by the service.

    Called at import time with the configured URL; tests call it again
    to point the service at a throwaway database.
    """
    global engine, AsyncSessionFactory
    safe_url = database_url.replace(config.DATABASE_PASSWORD, "***") if config.DATABASE_PASSWORD else database_url # Hide password
    logger.info(f"Creating async engine with URL: {safe_url}")
    if database_url.startswith("sqlite"):
        engine_kwargs.setdefault("poolclass", NullPool)
    else:
        engine_kwargs.setdefault("pool_pre_ping", True)
    engine = create_async_engine(database_url, echo=config.DATABASE_ECHO, **engine_kwargs)
    # Use async_sessionmaker for SQLAlchemy 2.0+
    AsyncSessionFactory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine


try:
    configure_engine()
except Exception as e:
    logger.error(f"FATAL: Failed to create database engine or session factory: {e}")
    raise RuntimeError(f"Could not initialize database connection: {e}")


def session_factory():
    """Returns the current session factory (it changes when the engine is reconfigured)."""
    return AsyncSessionFactory


async def create_tables():
    """Creates the tables of every model imported so far. No migrations, dev-style start-up."""
    logger.info("Checking/Creating database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables check complete.")


async def ping() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False


async def dispose_engine():
    if engine is not None:
        await engine.dispose()


async def get_db_session() -> AsyncSession:
    """FastAPI dependency to inject DB session."""
    async with AsyncSessionFactory() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Rolling back session due to error: {e}")
            await session.rollback()
            raise
        # No automatic commit/close here, managed by 'async with'
