from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pharmajoin.core.config import Settings, settings as default_settings

logger = structlog.get_logger(__name__)


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    # pysqlite 默认不发出 BEGIN，SAVEPOINT 与事务性 DDL 会失效
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """
    数据库资源 (Database Resource)
    Owns the async engine and its bounded connection pool. Built once at
    startup, handed to request handlers, disposed on shutdown.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 20,
        pool_timeout: float = 2.0,
        pool_recycle: int = 30,
        echo: bool = False,
    ):
        self.url = url
        if url.startswith("sqlite"):
            # 本地测试：内存库需要在所有会话之间共享同一个连接
            self.engine = create_async_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
            _enable_sqlite_transactions(self.engine)
        else:
            self.engine = create_async_engine(
                url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=0,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=True,
            )
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Database":
        settings = settings or default_settings
        return cls(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_MAX,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_IDLE_TIMEOUT,
            echo=settings.DB_ECHO,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session scoped to one unit of work; always returned to the pool."""
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    async def dispose(self) -> None:
        """关闭数据库连接池"""
        await self.engine.dispose()
        logger.info("db_engine_disposed", dialect=self.dialect_name)


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """
    Dependency for getting async DB session.
    """
    async with get_database(request).session() as session:
        yield session
