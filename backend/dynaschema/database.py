"""
Database 연결 및 세션 관리
SQLAlchemy를 사용한 DB 세션 팩토리
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from dynaschema.config import settings

logger = logging.getLogger(__name__)

# SQLAlchemy Base 클래스
Base = declarative_base()


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    URL에 맞는 create_engine 옵션

    SQLite(테스트/로컬)는 풀 크기 옵션을 받지 않으므로 분기 처리
    """
    if database_url.startswith("sqlite"):
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        # 메모리 DB는 연결 하나를 공유해야 테이블이 유지됨
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options

    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,  # 연결 유효성 체크
    }


# Database Engine 생성
engine = create_engine(
    settings.database_url,
    echo=settings.database_echo,
    **engine_options(settings.database_url),
)

# SessionLocal 팩토리
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """
    요청 단위 DB 세션 제공 (Dependency 용)

    Usage:
        db = next(get_db())
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context Manager로 사용할 DB 세션 제공

    Usage:
        with get_db_context() as db:
            attributes = db.query(AttributeDefinition).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    데이터베이스 초기화
    테이블이 없으면 생성 (개발/테스트 환경에서만 사용)

    Production에서는 Alembic 마이그레이션 사용
    """
    # 모든 모델을 import해야 Base.metadata에 등록됨
    from dynaschema.models import core  # noqa: F401

    Base.metadata.create_all(bind=engine)


def check_db_connection() -> bool:
    """
    데이터베이스 연결 상태 확인

    Returns:
        연결 성공 시 True, 실패 시 False
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection failed: {e}")
        return False
