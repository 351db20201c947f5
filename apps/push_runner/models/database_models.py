"""
SQLAlchemy 데이터베이스 모델
현재 푸시 작업을 담는 단일 슬롯 테이블
"""

from sqlalchemy import JSON, Column, DateTime, String, Text

from infrastructure.database import Base

CURRENT_SLOT = "current"


class PushJobSlot(Base):
    """단일 슬롯 작업 레코드 (slot 키는 항상 'current')"""

    __tablename__ = "push_job_slot"

    # 기본 키 - 고정 이름이므로 두 번째 행은 삽입될 수 없다
    slot = Column(String(32), primary_key=True, default=CURRENT_SLOT)

    # 작업 정보
    process_id = Column(String(100), nullable=False, unique=True)
    command = Column(Text, nullable=False)
    backend = Column(String(32), nullable=False)
    backend_handle = Column(JSON, nullable=False)
    output_location = Column(Text, nullable=False)
    artifacts = Column(JSON, default=list)

    # 시간 정보 (UTC)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # 결과
    final_output = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PushJobSlot process_id={self.process_id!r} backend={self.backend!r} "
            f"completed={self.completed_at is not None}>"
        )
