"""
환경 설정 모듈
Pydantic Settings를 사용하여 .env 파일에서 환경변수를 로드합니다.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """스키마 엔진 설정"""

    # Application
    app_name: str = "DynaSchema"
    app_version: str = "0.1.0"
    environment: str = "development"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 40
    database_echo: bool = False

    # Redis (분산 스키마 캐시)
    redis_url: Optional[str] = None
    redis_max_connections: int = 50

    # ComposedSchema 캐시
    schema_cache_backend: str = "memory"  # memory, redis, none
    schema_cache_ttl: int = 300  # 5분
    schema_cache_max_entries: int = 10000

    # 외부 협력 서비스 (인스턴스 저장소, 클래스 템플릿)
    instance_store_url: Optional[str] = None
    class_registry_url: Optional[str] = None
    external_timeout_seconds: float = 5.0

    # 속성 이름 규칙 (테넌트 내 유일, 생성 후 변경 불가)
    attribute_name_pattern: str = r"^[a-z][a-z0-9_]{0,62}$"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# 전역 설정 인스턴스
settings = Settings()
