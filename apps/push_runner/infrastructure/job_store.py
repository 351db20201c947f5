"""
단일 슬롯 작업 저장소

모든 변경은 조건부 SQL 한 문장으로 이루어진다:
고정 기본 키 INSERT, ``completed_at IS NULL`` 조건 UPDATE, process_id 조건 DELETE.
같은 데이터베이스를 쓰는 다른 프로세스의 폴러와도 경합하지 않는다.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from infrastructure.database import session_scope
from models.database_models import CURRENT_SLOT, PushJobSlot
from services.errors import AlreadyRunning

logger = structlog.get_logger()


def _as_utc(value: datetime | None) -> datetime | None:
    # sqlite는 tzinfo 없이 돌려준다
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@dataclass
class JobRecord:
    """슬롯에 저장된 작업"""

    process_id: str
    command: str
    backend: str
    backend_handle: dict[str, Any]
    output_location: str
    started_at: datetime
    artifacts: list[str] = field(default_factory=list)
    completed_at: datetime | None = None
    final_output: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @classmethod
    def from_row(cls, row: PushJobSlot) -> "JobRecord":
        return cls(
            process_id=row.process_id,
            command=row.command,
            backend=row.backend,
            backend_handle=dict(row.backend_handle or {}),
            output_location=row.output_location,
            started_at=_as_utc(row.started_at),
            artifacts=list(row.artifacts or []),
            completed_at=_as_utc(row.completed_at),
            final_output=row.final_output,
        )


class JobStore:
    """현재 작업 하나만 담는 저장소"""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get(self) -> JobRecord | None:
        async with self.session_maker() as session:
            result = await session.execute(
                select(PushJobSlot).where(PushJobSlot.slot == CURRENT_SLOT)
            )
            row = result.scalar_one_or_none()
            return JobRecord.from_row(row) if row is not None else None

    async def create(self, record: JobRecord) -> None:
        """새 작업 기록. 완료된 작업은 대체하고 실행 중인 작업이 있으면 AlreadyRunning"""
        try:
            async with session_scope(self.session_maker) as session:
                await session.execute(
                    delete(PushJobSlot).where(
                        PushJobSlot.slot == CURRENT_SLOT,
                        PushJobSlot.completed_at.is_not(None),
                    )
                )
                await session.execute(
                    insert(PushJobSlot).values(
                        slot=CURRENT_SLOT,
                        process_id=record.process_id,
                        command=record.command,
                        backend=record.backend,
                        backend_handle=record.backend_handle,
                        output_location=record.output_location,
                        artifacts=record.artifacts,
                        started_at=record.started_at,
                        completed_at=None,
                        final_output=None,
                    )
                )
        except IntegrityError as exc:
            existing = await self.get()
            existing_id = existing.process_id if existing else "unknown"
            logger.warning(
                "Job slot already taken",
                process_id=record.process_id,
                existing_process_id=existing_id,
            )
            raise AlreadyRunning(existing_id) from exc

    async def finalize(
        self, process_id: str, final_output: str, completed_at: datetime
    ) -> bool:
        """실행 중인 작업을 완료로 기록. 이 호출이 전이를 수행했으면 True"""
        async with session_scope(self.session_maker) as session:
            result = await session.execute(
                update(PushJobSlot)
                .where(
                    PushJobSlot.slot == CURRENT_SLOT,
                    PushJobSlot.process_id == process_id,
                    PushJobSlot.completed_at.is_(None),
                )
                .values(final_output=final_output, completed_at=completed_at)
            )
            return result.rowcount == 1

    async def delete(self, process_id: str | None = None) -> JobRecord | None:
        """슬롯 비우기. process_id가 주어지면 그 작업일 때만 삭제한다"""
        async with session_scope(self.session_maker) as session:
            query = select(PushJobSlot).where(PushJobSlot.slot == CURRENT_SLOT)
            if process_id is not None:
                query = query.where(PushJobSlot.process_id == process_id)
            row = (await session.execute(query)).scalar_one_or_none()
            if row is None:
                return None
            record = JobRecord.from_row(row)

            result = await session.execute(
                delete(PushJobSlot).where(
                    PushJobSlot.slot == CURRENT_SLOT,
                    PushJobSlot.process_id == record.process_id,
                )
            )
            if result.rowcount != 1:
                return None
            return record
