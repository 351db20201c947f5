"""systemd-managed job backend.

Each job is an instance of a templated unit (``<unit>@<instance>``). The
service manager owns the process and its log; this backend only starts,
queries and stops the instance.
"""

import asyncio
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from config import settings
from infrastructure.job_backend.base import BackendLaunch, CommandSpec, JobBackend
from infrastructure.job_backend.instance_codec import encode_instance, parse_legacy_command
from models.job_dto import DeployTarget
from services.errors import BackendQueryError, InvalidCommand, LaunchFailure

logger = structlog.get_logger()

ALIVE_STATES = frozenset({"active", "activating"})
KNOWN_STATES = ALIVE_STATES | {
    "inactive",
    "failed",
    "deactivating",
    "reloading",
    "maintenance",
    "refreshing",
    "unknown",
}


class SystemdBackend(JobBackend):
    """Background runner that delegates execution to systemd."""

    name = "systemd"
    process_id_prefix = "systemd"

    def __init__(
        self,
        unit: str | None = None,
        log_dir: str | os.PathLike | None = None,
        systemctl_path: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.unit = unit or settings.systemd_unit
        self.log_dir = Path(log_dir or settings.systemd_log_dir)
        self.systemctl_path = systemctl_path or settings.systemctl_path
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.manager_timeout_seconds
        )

    def service_name(self, instance_id: str) -> str:
        return f"{self.unit}@{instance_id}"

    def log_path(self, instance_id: str) -> Path:
        return self.log_dir / f"build-{instance_id}.log"

    @staticmethod
    def resolve_target(command: CommandSpec) -> DeployTarget:
        if isinstance(command, DeployTarget):
            return command
        if isinstance(command, str):
            return parse_legacy_command(command)
        raise InvalidCommand(
            "The systemd backend needs a deploy target or a 'script -o ORG -n NAME' command line"
        )

    async def _systemctl(self, *args: str) -> tuple[int, str]:
        """Run systemctl and return (exit code, combined output)."""
        argv = [self.systemctl_path, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise BackendQueryError(f"Could not run {self.systemctl_path}: {exc}") from exc

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise BackendQueryError(
                f"{self.systemctl_path} {' '.join(args)} timed out after {self.timeout_seconds}s"
            ) from exc

        return process.returncode, stdout.decode("utf-8", errors="replace").strip()

    async def start(self, command: CommandSpec, process_id: str) -> BackendLaunch:
        target = self.resolve_target(command)
        instance_id = encode_instance(target)
        service = self.service_name(instance_id)

        try:
            returncode, output = await self._systemctl("start", service)
        except BackendQueryError as exc:
            logger.error("Failed to reach service manager", service=service, error=str(exc))
            raise LaunchFailure(f"Failed to start systemd service: {exc}", diagnostic=str(exc)) from exc

        if returncode != 0:
            logger.error(
                "Failed to start systemd service",
                service=service,
                returncode=returncode,
                output=output,
            )
            raise LaunchFailure(f"Failed to start systemd service: {output}", diagnostic=output)

        logger.info("Systemd job started", process_id=process_id, service=service)
        return BackendLaunch(
            command=command if isinstance(command, str) else service,
            handle={"service_name": service, "instance_id": instance_id},
            output_location=str(self.log_path(instance_id)),
            artifacts=[],
        )

    async def is_alive(self, handle: dict[str, Any]) -> bool:
        service = handle.get("service_name")
        if not service:
            return False

        _, output = await self._systemctl("is-active", service)
        state = output.splitlines()[0].strip() if output else ""
        if state not in KNOWN_STATES:
            logger.warning("Unexpected systemctl is-active output", service=service, output=output)
            raise BackendQueryError(f"Could not determine state of {service}: {output!r}")
        return state in ALIVE_STATES

    async def terminate(self, handle: dict[str, Any]) -> None:
        service = handle.get("service_name")
        if not service:
            return
        try:
            returncode, output = await self._systemctl("stop", "--no-block", service)
        except BackendQueryError as exc:
            logger.warning("Failed to stop systemd service", service=service, error=str(exc))
            return
        if returncode != 0:
            logger.warning(
                "systemctl stop returned non-zero",
                service=service,
                returncode=returncode,
                output=output,
            )
        else:
            logger.info("Requested stop of systemd service", service=service)

    def cleanup(self, artifacts: Sequence[str]) -> None:
        # the log belongs to the logging subsystem
        return None

    def health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "backend": self.name,
            "unit": self.unit,
            "log_dir": str(self.log_dir),
            "systemctl": self.systemctl_path,
        }
