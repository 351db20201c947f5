from infrastructure.job_backend.base import BackendLaunch, CommandSpec, JobBackend
from infrastructure.job_backend.detached_backend import DetachedProcessBackend
from infrastructure.job_backend.factory import (
    create_job_backend,
    get_job_backend,
    get_job_backend_health,
    reset_job_backend_cache,
)
from infrastructure.job_backend.systemd_backend import SystemdBackend

__all__ = [
    "BackendLaunch",
    "CommandSpec",
    "JobBackend",
    "DetachedProcessBackend",
    "SystemdBackend",
    "create_job_backend",
    "get_job_backend",
    "get_job_backend_health",
    "reset_job_backend_cache",
]
