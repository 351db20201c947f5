"""
데이터베이스 연결
Async SQLAlchemy engine and session factory backing the job slot.
"""

from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from config import settings

logger = structlog.get_logger()

# 데이터베이스 메타데이터 설정
metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "pk": "pk_%(table_name)s",
    }
)

# Base 클래스 생성
Base = declarative_base(metadata=metadata)


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed sqlite database."""
    prefix = "sqlite+aiosqlite:///"
    if not database_url.startswith(prefix):
        return
    db_path = database_url[len(prefix) :]
    if not db_path or db_path.startswith(":memory:"):
        return
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine for the configured (or given) database URL."""
    url = database_url or settings.database_url
    if "sqlite" in url:
        _ensure_sqlite_directory(url)
        # 여러 프로세스가 같은 파일을 폴링하므로 잠금 대기 시간을 둔다
        return create_async_engine(
            url, echo=settings.debug, connect_args={"timeout": 15}
        )
    return create_async_engine(
        url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """비동기 세션 팩토리"""
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


async def init_db(engine: AsyncEngine) -> None:
    """데이터베이스 초기화 (테이블 생성)"""
    # 모델 등록
    import models.database_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized", url=str(engine.url))


async def close_db(engine: AsyncEngine) -> None:
    """데이터베이스 연결 종료"""
    await engine.dispose()
    logger.info("Database connections closed")


@asynccontextmanager
async def session_scope(session_maker: async_sessionmaker[AsyncSession]):
    """Transactional session: commit on success, rollback on error."""
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_database_connection(session_maker: async_sessionmaker[AsyncSession]) -> bool:
    """데이터베이스 연결 상태 확인"""
    try:
        async with session_maker() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
