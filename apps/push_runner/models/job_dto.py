"""
푸시 작업 관련 데이터 모델
"""

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

_COMMAND_KIND_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


class DeployTarget(BaseModel):
    """구조화된 배포 대상 (systemd 인스턴스 파라미터)"""

    org: str = Field(..., min_length=1, description="조직")
    name: str = Field(..., min_length=1, description="사이트 이름")
    command_kind: str = Field("default", description="명령 종류 (cloudflare, bunny, aws ...)")
    bucket: str = Field("", description="버킷/목적지 (선택)")

    @field_validator("command_kind")
    @classmethod
    def _plain_command_kind(cls, value: str) -> str:
        # command kind는 인스턴스 식별자에서 이스케이프되지 않는다
        if not _COMMAND_KIND_RE.match(value):
            raise ValueError(f"command_kind must match {_COMMAND_KIND_RE.pattern}: {value!r}")
        return value


class LaunchReceipt(BaseModel):
    """작업 시작 응답"""

    process_id: str = Field(..., description="실행 상관관계 토큰")
    handle: dict[str, Any] = Field(..., description="PID 또는 systemd 서비스/인스턴스")


class JobStatusView(BaseModel):
    """폴링 응답"""

    is_running: bool = False
    output: str = ""
    command: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    handle: dict[str, Any] | None = None
    process_id: str | None = None

    @classmethod
    def idle(cls) -> "JobStatusView":
        return cls()

    @property
    def is_idle(self) -> bool:
        return self.process_id is None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def duration_seconds(self) -> int | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds())

    def to_response(self) -> dict[str, Any]:
        """JSON-ready payload for the status endpoint of the web layer."""
        if self.is_idle:
            return {"is_running": False, "output": ""}
        return self.model_dump(mode="json")


class CommandKindConfig(BaseModel):
    """환경별 명령 종류 표시 정보"""

    label: str
    description: str = ""


class EnvironmentConfig(BaseModel):
    """배포 환경 설정"""

    key: str = Field(..., min_length=1, description="환경 키 (dev, staging, prod ...)")
    org: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    bucket: str = ""
    commands: dict[str, CommandKindConfig] = Field(default_factory=dict)

    @field_validator("commands")
    @classmethod
    def _plain_command_kinds(cls, value: dict[str, CommandKindConfig]) -> dict[str, CommandKindConfig]:
        invalid = [kind for kind in value if not _COMMAND_KIND_RE.match(kind)]
        if invalid:
            raise ValueError(f"invalid command kinds: {', '.join(invalid)}")
        return value

    def target_for(self, command_kind: str) -> DeployTarget:
        return DeployTarget(
            org=self.org, name=self.name, command_kind=command_kind, bucket=self.bucket
        )
