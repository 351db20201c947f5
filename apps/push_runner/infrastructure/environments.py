"""
배포 환경 카탈로그

``<environments_dir>/<env>.env.json`` 파일마다 하나의 환경을 정의한다.
"""

import json
import re
from pathlib import Path

import structlog
from pydantic import ValidationError

from config import settings
from models.job_dto import CommandKindConfig, EnvironmentConfig

logger = structlog.get_logger()

ENV_FILE_SUFFIX = ".env.json"
_ENV_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class EnvironmentRegistry:
    """환경 설정 파일을 읽어 EnvironmentConfig로 제공"""

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory or settings.environments_dir)

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{key}{ENV_FILE_SUFFIX}"

    def _load(self, key: str, path: Path) -> EnvironmentConfig:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{path.name} must contain a JSON object")
        data["key"] = key
        config = EnvironmentConfig.model_validate(data)
        if not config.commands:
            # 명령이 정의되지 않은 환경은 기본 푸시 하나만 가진다
            config.commands = {
                "default": CommandKindConfig(
                    label=f"Push to {key}", description=f"Push to {key}"
                )
            }
        return config

    def list(self) -> list[EnvironmentConfig]:
        if not self.directory.is_dir():
            logger.warning("Environments directory not found", directory=str(self.directory))
            return []

        environments = []
        for path in sorted(self.directory.glob(f"*{ENV_FILE_SUFFIX}")):
            key = path.name[: -len(ENV_FILE_SUFFIX)]
            if not _ENV_KEY_RE.match(key):
                logger.warning("Skipping environment with invalid key", file=path.name)
                continue
            try:
                environments.append(self._load(key, path))
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("Skipping invalid environment file", file=path.name, error=str(e))
        return environments

    def get(self, key: str) -> EnvironmentConfig | None:
        if not _ENV_KEY_RE.match(key):
            return None
        path = self._path_for(key)
        if not path.is_file():
            return None
        try:
            return self._load(key, path)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Invalid environment file", file=path.name, error=str(e))
            return None
