"""Job backend abstraction used by JobTracker."""

import os
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from models.job_dto import DeployTarget

logger = structlog.get_logger()

# Raw shell line, argv sequence, or a structured deploy target.
CommandSpec = str | Sequence[str] | DeployTarget


@dataclass
class BackendLaunch:
    """What a backend reports back after starting a job."""

    command: str
    handle: dict[str, Any]
    output_location: str
    artifacts: list[str] = field(default_factory=list)


class JobBackend(ABC):
    """Starts a command asynchronously and reports whether it is still alive."""

    name: str = "abstract"
    process_id_prefix: str = "job"

    def new_process_id(self) -> str:
        return f"{self.process_id_prefix}_{uuid.uuid4().hex}"

    @abstractmethod
    async def start(self, command: CommandSpec, process_id: str) -> BackendLaunch:
        """Start the command and return without waiting for it to finish."""

    @abstractmethod
    async def is_alive(self, handle: dict[str, Any]) -> bool:
        """Whether the job behind *handle* is still running."""

    @abstractmethod
    async def terminate(self, handle: dict[str, Any]) -> None:
        """Signal the job to stop. Does not wait for it to exit."""

    async def read_output(self, output_location: str) -> str:
        """Current contents of the job's output; empty until it exists."""
        path = Path(output_location)
        if not path.is_file():
            return ""
        return path.read_bytes().decode("utf-8", errors="replace")

    def cleanup(self, artifacts: Sequence[str]) -> None:
        """Remove backend-owned artifacts. Safe to call more than once."""
        for artifact in artifacts:
            if not os.path.exists(artifact):
                continue
            try:
                os.unlink(artifact)
            except OSError as exc:
                logger.warning(
                    "Failed to remove job artifact", path=artifact, error=str(exc)
                )

    def health(self) -> dict[str, Any]:
        return {"status": "healthy", "backend": self.name}
