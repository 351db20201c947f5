"""
푸시 러너 설정 관리
환경 변수 및 애플리케이션 설정
"""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

JOB_BACKEND_MODES = ("detached", "systemd")


class Settings(BaseSettings):
    """애플리케이션 설정"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # 추가 필드 무시
    )

    # Application
    app_name: str = "Deploy Push Runner"
    version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False

    # Database (single-slot job store)
    database_url: str = "sqlite+aiosqlite:///./data/push_runner.db"

    # Job backend
    job_backend_mode: str = "detached"
    job_temp_dir: str = "/tmp/push_runner"
    stdbuf_path: str | None = None  # None이면 PATH에서 탐색

    # systemd backend
    systemctl_path: str = "systemctl"
    systemd_unit: str = "deploy-build"
    systemd_log_dir: str = "/var/log/deploy"
    manager_timeout_seconds: float = 10.0

    # Environment catalog
    environments_dir: str = str(Path(__file__).resolve().parent / "environments")

    # Polling (CLI watch)
    poll_interval_seconds: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # File Storage
    data_dir: str = "./data"

    @field_validator("job_backend_mode")
    @classmethod
    def _known_backend_mode(cls, value: str) -> str:
        mode = value.strip().lower()
        if mode not in JOB_BACKEND_MODES:
            raise ValueError(
                f"job_backend_mode must be one of {', '.join(JOB_BACKEND_MODES)}: {value}"
            )
        return mode


@lru_cache
def get_settings() -> Settings:
    """설정 싱글톤 인스턴스 반환"""
    return Settings()


# 전역 설정 인스턴스
settings = get_settings()
