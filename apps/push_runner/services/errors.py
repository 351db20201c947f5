"""
푸시 작업 오류 정의
"""


class PushJobError(Exception):
    """푸시 작업 관련 오류의 기본 클래스"""

    pass


class AlreadyRunning(PushJobError):
    """작업이 이미 실행 중 (conflict) - 완료를 기다리거나 먼저 취소해야 한다"""

    def __init__(self, process_id: str):
        super().__init__(f"A job is already running: {process_id}")
        self.process_id = process_id


class InvalidCommand(PushJobError):
    """비어 있거나 백엔드가 받을 수 없는 명령"""

    pass


class LaunchFailure(PushJobError):
    """백엔드가 작업 시작을 거부함. diagnostic은 백엔드 원문 메시지"""

    def __init__(self, message: str, diagnostic: str = ""):
        super().__init__(message)
        self.diagnostic = diagnostic


class ParseFailure(PushJobError):
    """인스턴스 식별자 또는 레거시 명령에서 org/name/command를 복원할 수 없음"""

    pass


class BackendUnavailable(PushJobError):
    """선택적 외부 도구가 없음 (느린 대체 경로로 동작)"""

    pass


class BackendQueryError(PushJobError):
    """백엔드 상태 조회 실패 - '중지됨'이 아니라 '알 수 없음'으로 취급"""

    pass
