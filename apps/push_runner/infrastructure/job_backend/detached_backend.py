"""Detached-process job backend.

The command runs from a small bash wrapper in its own session, so it keeps
running after the caller's process or request goes away. Output goes to a
private file and the PID is recorded in a marker file; both plus the script
are owned by the backend and removed by ``cleanup``.
"""

import os
import shlex
import shutil
import signal
import subprocess
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import psutil
import structlog

from config import settings
from infrastructure.job_backend.base import BackendLaunch, CommandSpec, JobBackend
from models.job_dto import DeployTarget
from services.errors import BackendUnavailable, InvalidCommand, LaunchFailure

logger = structlog.get_logger()

COMPLETION_TRAILER = "[Command completed with exit code: {exit_code}]"

# Popen handles of jobs started by this process, so finished children get reaped.
_children: dict[int, subprocess.Popen] = {}


def _reap_finished() -> None:
    """Drop handles of children that already exited. Their status is collected by poll()."""
    for pid, child in list(_children.items()):
        if child.poll() is not None:
            _children.pop(pid, None)


def _reap_in_background(pid: int) -> None:
    """Wait for a signalled child on a daemon thread so it does not linger as a zombie."""
    child = _children.pop(pid, None)
    if child is None or child.poll() is not None:
        return
    threading.Thread(target=child.wait, name=f"reap-{pid}", daemon=True).start()


def build_wrapper_script(command_line: str) -> str:
    """Wrap *command_line* so stderr is merged and completion is visible in the output."""
    trailer = COMPLETION_TRAILER.format(exit_code="$exit_code")
    return (
        "#!/bin/bash\n"
        "set -o pipefail\n"
        "exec 2>&1\n"
        # subshell, so an `exit` in the command still reaches the trailer
        f"(\n{command_line}\n)\n"
        "exit_code=$?\n"
        'echo ""\n'
        f'echo "{trailer}"\n'
        "exit $exit_code\n"
    )


class DetachedProcessBackend(JobBackend):
    """Background runner that spawns a detached bash process per job."""

    name = "detached"
    process_id_prefix = "cmd"

    def __init__(
        self,
        temp_dir: str | os.PathLike | None = None,
        stdbuf_path: str | None = None,
        shell_path: str | None = None,
    ):
        self.temp_dir = Path(temp_dir or settings.job_temp_dir)
        self.stdbuf_path = stdbuf_path if stdbuf_path is not None else settings.stdbuf_path
        self.shell_path = shell_path or shutil.which("bash") or "bash"

    @staticmethod
    def render_command(command: CommandSpec) -> str:
        """Shell line for the wrapper script. Argv is quoted exactly once, here."""
        if isinstance(command, DeployTarget):
            raise InvalidCommand(
                "The detached backend runs shell commands; deploy targets need the systemd backend"
            )
        if isinstance(command, str):
            return command
        if isinstance(command, Sequence):
            return shlex.join(str(part) for part in command)
        raise InvalidCommand(f"Unsupported command type: {type(command).__name__}")

    def artifact_paths(self, process_id: str) -> tuple[Path, Path, Path]:
        """(script, output, pid marker) for *process_id*."""
        return (
            self.temp_dir / f"{process_id}_script.sh",
            self.temp_dir / f"{process_id}_output.log",
            self.temp_dir / f"{process_id}_pid.txt",
        )

    def resolve_stdbuf(self) -> str:
        """Path of the unbuffered-I/O helper, or BackendUnavailable."""
        candidate = self.stdbuf_path or shutil.which("stdbuf")
        if not candidate or not os.access(candidate, os.X_OK):
            raise BackendUnavailable("stdbuf not found; output will be block-buffered")
        return candidate

    def _build_argv(self, script_file: Path) -> list[str]:
        argv = [self.shell_path, str(script_file)]
        try:
            stdbuf = self.resolve_stdbuf()
        except BackendUnavailable as exc:
            logger.warning("Falling back to buffered output", reason=str(exc))
            return argv
        return [stdbuf, "-oL", "-eL", *argv]

    async def start(self, command: CommandSpec, process_id: str) -> BackendLaunch:
        _reap_finished()
        command_line = self.render_command(command)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        script_file, output_file, pid_file = self.artifact_paths(process_id)
        artifacts = [str(script_file), str(output_file), str(pid_file)]

        script_file.write_text(build_wrapper_script(command_line), encoding="utf-8")
        script_file.chmod(0o755)

        argv = self._build_argv(script_file)
        try:
            with open(output_file, "wb") as output:
                process = subprocess.Popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=output,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,  # survives the caller
                    close_fds=True,
                )
        except OSError as exc:
            self.cleanup(artifacts)
            logger.error("Failed to spawn detached job", argv=argv, error=str(exc))
            raise LaunchFailure(f"Failed to spawn command: {exc}", diagnostic=str(exc)) from exc

        _children[process.pid] = process
        pid_file.write_text(str(process.pid), encoding="utf-8")

        logger.info(
            "Detached job started",
            process_id=process_id,
            pid=process.pid,
            unbuffered=argv[0] != self.shell_path,
        )
        return BackendLaunch(
            command=command_line,
            handle={"pid": process.pid},
            output_location=str(output_file),
            artifacts=artifacts,
        )

    async def is_alive(self, handle: dict[str, Any]) -> bool:
        # PID reuse is not guarded against: a recycled PID reads as the original job.
        _reap_finished()
        pid = handle.get("pid")
        if not pid:
            return False
        pid = int(pid)

        child = _children.get(pid)
        if child is not None:
            if child.poll() is None:
                return True
            _children.pop(pid, None)
            return False

        try:
            process = psutil.Process(pid)
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # exists but belongs to someone else
            return True

    async def terminate(self, handle: dict[str, Any]) -> None:
        pid = handle.get("pid")
        if not pid:
            return
        pid = int(pid)
        try:
            # the job leads its own session, so signal the whole group
            os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.info("Job process already gone", pid=pid)
        except PermissionError:
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                logger.info("Job process already gone", pid=pid)
        else:
            logger.info("Sent SIGTERM to job", pid=pid)
        _reap_in_background(pid)

    def health(self) -> dict[str, Any]:
        try:
            self.resolve_stdbuf()
            unbuffered = True
        except BackendUnavailable:
            unbuffered = False
        shell_ok = shutil.which(self.shell_path) is not None
        return {
            "status": "healthy" if shell_ok else "degraded",
            "backend": self.name,
            "shell": self.shell_path,
            "unbuffered_output": unbuffered,
            "temp_dir": str(self.temp_dir),
        }
