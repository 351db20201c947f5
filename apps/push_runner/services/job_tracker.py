"""
푸시 작업 추적 서비스
단일 작업의 시작, 상태 폴링, 취소, 정리
"""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from structlog.contextvars import bound_contextvars

from infrastructure.environments import EnvironmentRegistry
from infrastructure.job_backend import CommandSpec, JobBackend, create_job_backend
from infrastructure.job_store import JobRecord, JobStore
from models.job_dto import DeployTarget, EnvironmentConfig, JobStatusView, LaunchReceipt
from services.errors import AlreadyRunning, InvalidCommand

logger = structlog.get_logger()


def _validate_command(command: CommandSpec | None) -> None:
    if command is None:
        raise InvalidCommand("No command provided")
    if isinstance(command, DeployTarget):
        return
    if isinstance(command, str):
        if not command.strip():
            raise InvalidCommand("No command provided")
        return
    if isinstance(command, Sequence):
        if not command or not str(command[0]).strip():
            raise InvalidCommand("No command provided")
        return
    raise InvalidCommand(f"Unsupported command type: {type(command).__name__}")


class JobTracker:
    """단일 슬롯 작업 상태 머신 (Idle -> Running -> Completed)"""

    def __init__(
        self,
        store: JobStore,
        backend: JobBackend,
        environments: EnvironmentRegistry | None = None,
    ):
        self.store = store
        self.backend = backend
        self.environments = environments
        self._lock = asyncio.Lock()

    def _backend_for(self, record: JobRecord) -> JobBackend:
        # 백엔드 모드가 바뀐 뒤에도 이전 작업은 원래 백엔드로 다룬다
        if record.backend == self.backend.name:
            return self.backend
        return create_job_backend(record.backend)

    async def launch(self, command: CommandSpec) -> LaunchReceipt:
        """
        작업 시작

        Args:
            command: 셸 명령 문자열, argv 시퀀스 또는 DeployTarget

        Returns:
            process_id와 백엔드 핸들

        Raises:
            InvalidCommand: 명령이 비어 있음
            AlreadyRunning: 실행 중인 작업이 있음
            LaunchFailure: 백엔드가 시작을 거부함
        """
        _validate_command(command)

        async with self._lock:
            existing = await self.store.get()
            if existing is not None and not existing.is_completed:
                raise AlreadyRunning(existing.process_id)

            process_id = self.backend.new_process_id()
            with bound_contextvars(process_id=process_id):
                launch = await self.backend.start(command, process_id)
                record = JobRecord(
                    process_id=process_id,
                    command=launch.command,
                    backend=self.backend.name,
                    backend_handle=launch.handle,
                    output_location=launch.output_location,
                    artifacts=launch.artifacts,
                    started_at=datetime.now(UTC),
                )
                try:
                    await self.store.create(record)
                except Exception:
                    # 기록되지 못한 작업은 남겨 두지 않는다
                    logger.warning("Discarding job that lost the slot")
                    await self.backend.terminate(launch.handle)
                    self.backend.cleanup(launch.artifacts)
                    raise

                logger.info(
                    "Job started",
                    backend=self.backend.name,
                    command=launch.command,
                    handle=launch.handle,
                )

        return LaunchReceipt(process_id=process_id, handle=launch.handle)

    async def poll(self) -> JobStatusView:
        """
        현재 작업 상태 조회

        실행 중이면 지금까지의 출력을, 종료되었으면 최종 출력을 돌려준다.
        종료를 처음 관측한 폴링만 완료 기록과 임시 파일 정리를 수행한다.

        Raises:
            BackendQueryError: 백엔드 상태를 알 수 없음
        """
        async with self._lock:
            record = await self.store.get()
            if record is None:
                return JobStatusView.idle()
            if record.is_completed:
                return self._view(record, output=record.final_output or "")

            with bound_contextvars(process_id=record.process_id):
                backend = self._backend_for(record)
                alive = await backend.is_alive(record.backend_handle)
                output = await backend.read_output(record.output_location)
                if alive:
                    return self._view(record, output=output, is_running=True)

                completed_at = max(datetime.now(UTC), record.started_at)
                if await self.store.finalize(record.process_id, output, completed_at):
                    backend.cleanup(record.artifacts)
                    record.final_output = output
                    record.completed_at = completed_at
                    logger.info(
                        "Job completed",
                        duration_seconds=int((completed_at - record.started_at).total_seconds()),
                    )
                    return self._view(record, output=output)

                # 다른 폴러가 먼저 완료 처리했거나 슬롯이 비워졌다
                current = await self.store.get()
                if current is None or current.process_id != record.process_id:
                    return JobStatusView.idle()
                return self._view(current, output=current.final_output or "")

    async def cancel(self) -> None:
        """실행 중이면 종료 신호를 보내고 슬롯을 비운다. Idle이면 아무것도 하지 않는다"""
        async with self._lock:
            record = await self.store.get()
            if record is None:
                return

            with bound_contextvars(process_id=record.process_id):
                backend = self._backend_for(record)
                try:
                    if not record.is_completed:
                        await backend.terminate(record.backend_handle)
                finally:
                    await self.store.delete(record.process_id)
                    backend.cleanup(record.artifacts)
                logger.info("Job cancelled")

    async def clear(self) -> None:
        """슬롯만 비운다. 실행 중인 프로세스에는 신호를 보내지 않는다"""
        async with self._lock:
            record = await self.store.delete()
            if record is None:
                return
            with bound_contextvars(process_id=record.process_id):
                self._backend_for(record).cleanup(record.artifacts)
                if not record.is_completed:
                    logger.warning("Cleared a running job; the process keeps running")
                else:
                    logger.info("Job cleared")

    def list_environments(self) -> list[EnvironmentConfig]:
        if self.environments is None:
            return []
        return self.environments.list()

    async def trigger(self, environment: str, command_kind: str = "default") -> LaunchReceipt:
        """환경 카탈로그의 배포 대상을 시작"""
        if self.environments is None:
            raise InvalidCommand("No environment catalog configured")
        config = self.environments.get(environment)
        if config is None:
            raise InvalidCommand(f"Unknown environment: {environment}")
        if command_kind not in config.commands:
            raise InvalidCommand(
                f"Unknown command kind {command_kind!r} for environment {environment}"
            )
        return await self.launch(config.target_for(command_kind))

    @staticmethod
    def _view(record: JobRecord, output: str, is_running: bool = False) -> JobStatusView:
        return JobStatusView(
            is_running=is_running,
            output=output,
            command=record.command,
            started_at=record.started_at,
            completed_at=record.completed_at,
            handle=record.backend_handle,
            process_id=record.process_id,
        )
