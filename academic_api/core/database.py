from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, StaticPool
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()


def normalize_database_url(database_url: str) -> str:
    """Point plain postgresql:// URLs at the asyncpg driver"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


class Database:
    """Engine and session factory for one application instance.

    Built at startup and disposed at shutdown; request handlers reach it
    through ``get_db``.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.url = normalize_database_url(database_url)

        if self.url.startswith("sqlite"):
            # In-memory SQLite must share one connection across sessions
            self.engine = create_async_engine(
                self.url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_async_engine(
                self.url,
                echo=echo,
                poolclass=NullPool,
                pool_pre_ping=True,
                pool_recycle=3600,
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=True,
        )

    async def create_tables(self):
        """Create all database tables"""
        try:
            async with self.engine.begin() as conn:
                # Import all models to ensure they're registered
                from .. import models  # noqa: F401

                logger.info("Creating database tables...")
                await conn.run_sync(Base.metadata.create_all)
                logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error creating database tables: {e}")
            raise

    async def seed_roles(self):
        """Make sure every system role exists"""
        from ..models.role import Role, RoleName

        async with self.session_factory() as session:
            result = await session.execute(select(Role.name))
            existing = set(result.scalars().all())
            missing = [role for role in RoleName if role.value not in existing]
            for role in missing:
                session.add(Role(name=role.value))
            await session.commit()
            if missing:
                logger.info(f"Seeded roles: {', '.join(r.value for r in missing)}")

    async def dispose(self):
        """Close database engine"""
        try:
            await self.engine.dispose()
            logger.info("Database engine disposed")
        except Exception as e:
            logger.error(f"Error disposing database engine: {e}")


async def get_db(request: Request):
    """Dependency to get database session"""
    database: Database = request.app.state.database
    async with database.session_factory() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Database session error: {e}")
            await session.rollback()
            raise
        finally:
            await session.close()
