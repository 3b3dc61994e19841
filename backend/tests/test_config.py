"""
Settings / Database 설정 테스트
"""
import pytest
from pydantic import ValidationError
from sqlalchemy.pool import StaticPool

from dynaschema.config import Settings, settings
from dynaschema.database import check_db_connection, engine_options


class TestSettings:
    """환경 변수 기반 설정"""

    def test_test_environment_loaded(self):
        assert settings.environment == "test"
        assert settings.database_url == "sqlite://"
        assert settings.schema_cache_backend == "memory"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SCHEMA_CACHE_TTL", "42")
        monkeypatch.setenv("EXTERNAL_TIMEOUT_SECONDS", "1.5")
        config = Settings()
        assert config.schema_cache_ttl == 42
        assert config.external_timeout_seconds == 1.5

    def test_database_url_required(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_defaults(self):
        assert settings.attribute_name_pattern.startswith("^")
        assert settings.instance_store_url is None


class TestEngineOptions:
    """URL별 엔진 옵션"""

    def test_memory_sqlite_uses_static_pool(self):
        options = engine_options("sqlite://")
        assert options["poolclass"] is StaticPool
        assert options["connect_args"] == {"check_same_thread": False}

    def test_file_sqlite(self):
        assert "poolclass" not in engine_options("sqlite:///tmp/schema.db")

    def test_postgresql_pool(self):
        options = engine_options("postgresql://user:pw@localhost/db")
        assert options["pool_size"] == settings.database_pool_size
        assert options["pool_pre_ping"] is True

    def test_check_db_connection(self):
        assert check_db_connection() is True


class TestSessions:
    """세션 팩토리"""

    def test_get_db_yields_and_closes(self):
        from sqlalchemy.orm import Session

        from dynaschema.database import get_db

        gen = get_db()
        session = next(gen)
        assert isinstance(session, Session)
        with pytest.raises(StopIteration):
            next(gen)

    def test_get_db_context(self):
        from sqlalchemy.orm import Session

        from dynaschema.database import get_db_context

        with get_db_context() as session:
            assert isinstance(session, Session)
