"""Job backend factory helpers."""

from functools import lru_cache
from typing import Any

from config import JOB_BACKEND_MODES, settings
from infrastructure.job_backend.base import JobBackend
from infrastructure.job_backend.detached_backend import DetachedProcessBackend
from infrastructure.job_backend.systemd_backend import SystemdBackend


def create_job_backend(mode: str | None = None) -> JobBackend:
    selected_mode = (mode or settings.job_backend_mode).lower()
    if selected_mode == "systemd":
        return SystemdBackend()
    if selected_mode == "detached":
        return DetachedProcessBackend()
    raise ValueError(f"Unknown job backend mode {selected_mode!r}; expected one of {JOB_BACKEND_MODES}")


@lru_cache(maxsize=1)
def get_job_backend() -> JobBackend:
    return create_job_backend()


def reset_job_backend_cache() -> None:
    get_job_backend.cache_clear()


def get_job_backend_health() -> dict[str, Any]:
    return get_job_backend().health()
