"""
systemd 인스턴스 식별자 인코딩/디코딩

형식: ``org:name:command[:bucket]``. org/name/bucket 안의 ``:``만 ``%3A``로
이스케이프한다. 유닛 쪽 파서가 ``%3A``만 되돌리므로 값 안의 리터럴 ``%3A``는
구분할 수 없다.
"""

import os
import shlex

import structlog
from pydantic import ValidationError

from models.job_dto import DeployTarget
from services.errors import ParseFailure

logger = structlog.get_logger()

_ESCAPED_COLON = "%3A"

LEGACY_FORMAT_HINT = "Command format should be: script -o ORG -n NAME"


def _escape(value: str) -> str:
    return value.replace(":", _ESCAPED_COLON)


def _unescape(value: str) -> str:
    return value.replace(_ESCAPED_COLON, ":")


def encode_instance(target: DeployTarget) -> str:
    """DeployTarget -> 인스턴스 식별자"""
    fields = [_escape(target.org), _escape(target.name), target.command_kind]
    if target.bucket:
        fields.append(_escape(target.bucket))
    return ":".join(fields)


def decode_instance(instance: str) -> DeployTarget:
    """인스턴스 식별자 -> DeployTarget

    4필드 형식을 우선하고 3필드로 대체한다. 네 번째 필드는 이스케이프되지
    않은 콜론을 포함할 수 있다.
    """
    fields = instance.split(":", 3)
    if len(fields) < 3 or any(field == "" for field in fields):
        raise ParseFailure(f"Invalid instance identifier: {instance!r}")

    org, name, command_kind = fields[:3]
    bucket = fields[3] if len(fields) == 4 else ""
    try:
        return DeployTarget(
            org=_unescape(org),
            name=_unescape(name),
            command_kind=command_kind,
            bucket=_unescape(bucket),
        )
    except ValidationError as exc:
        raise ParseFailure(f"Invalid instance identifier: {instance!r}") from exc


def _kind_from_script(token: str) -> str | None:
    base = os.path.basename(token)
    if base.startswith("deploy-") and base.endswith(".sh"):
        kind = base[len("deploy-") : -len(".sh")]
        return kind or None
    return None


def parse_legacy_command(command: str) -> DeployTarget:
    """``script -o ORG -n NAME [-b BUCKET]`` 형식의 명령을 DeployTarget으로 변환

    명령 종류는 ``deploy-<kind>.sh`` 스크립트 이름에서 가져오고 ``-k``가
    있으면 그 값을 쓴다. 둘 다 없으면 ``default``.
    """
    try:
        tokens = shlex.split(command)
    except ValueError as exc:
        logger.error("Failed to tokenize legacy command", command=command, error=str(exc))
        raise ParseFailure(
            f"Could not parse command for org and name. {LEGACY_FORMAT_HINT}. Received: {command}"
        ) from exc

    options: dict[str, str] = {}
    command_kind = None
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token in ("-o", "-n", "-b", "-k") and index + 1 < len(tokens):
            options[token] = tokens[index + 1]
            index += 2
            continue
        if command_kind is None:
            command_kind = _kind_from_script(token)
        index += 1

    org = options.get("-o", "")
    name = options.get("-n", "")
    if not org or not name:
        logger.error("Could not parse legacy command", command=command)
        raise ParseFailure(
            f"Could not parse command for org and name. {LEGACY_FORMAT_HINT}. Received: {command}"
        )

    try:
        return DeployTarget(
            org=org,
            name=name,
            command_kind=options.get("-k") or command_kind or "default",
            bucket=options.get("-b", ""),
        )
    except ValidationError as exc:
        logger.error("Invalid legacy command", command=command, error=str(exc))
        raise ParseFailure(f"Invalid command kind in: {command}") from exc
