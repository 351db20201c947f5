#!/usr/bin/env python3
"""
푸시 러너 운영용 CLI

사용법:
    push-runner launch "./deploy-aws.sh -o acme -n site"   # 셸 명령 한 줄
    push-runner launch -- rsync -a build/ host:/srv/site   # argv
    push-runner trigger prod aws
    push-runner status
    push-runner watch --interval 1
    push-runner cancel
    push-runner clear
    push-runner environments
    push-runner health
"""

import argparse
import asyncio
import json
import sys
from contextlib import asynccontextmanager

from config import JOB_BACKEND_MODES, settings
from infrastructure.database import (
    check_database_connection,
    close_db,
    create_engine,
    create_session_maker,
    init_db,
)
from infrastructure.environments import EnvironmentRegistry
from infrastructure.job_backend import create_job_backend
from infrastructure.job_store import JobStore
from logging_config import configure_logging
from services.errors import LaunchFailure, PushJobError
from services.job_tracker import JobTracker


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="push-runner", description="단일 배포 작업 실행 및 추적"
    )
    parser.add_argument(
        "--backend",
        choices=JOB_BACKEND_MODES,
        default=None,
        help="작업 백엔드 (기본값: JOB_BACKEND_MODE 설정)",
    )
    subparsers = parser.add_subparsers(dest="action", required=True)

    launch = subparsers.add_parser("launch", help="명령 실행")
    launch.add_argument(
        "command",
        nargs="+",
        help="인자 하나는 셸 명령 줄로, 여러 개는 argv로 실행",
    )

    trigger = subparsers.add_parser("trigger", help="환경 카탈로그의 배포 실행")
    trigger.add_argument("environment", help="환경 키 (dev, prod ...)")
    trigger.add_argument("command_kind", nargs="?", default="default", help="명령 종류")

    subparsers.add_parser("status", help="현재 작업 상태 조회")

    watch = subparsers.add_parser("watch", help="작업이 끝날 때까지 출력 추적")
    watch.add_argument(
        "--interval",
        type=float,
        default=None,
        help="폴링 간격(초), 기본값: POLL_INTERVAL_SECONDS",
    )

    subparsers.add_parser("cancel", help="작업 중지 및 슬롯 비우기")
    subparsers.add_parser("clear", help="프로세스를 건드리지 않고 슬롯 비우기")
    subparsers.add_parser("environments", help="환경 목록")
    subparsers.add_parser("health", help="백엔드 및 저장소 상태")
    return parser


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


@asynccontextmanager
async def open_tracker(backend_mode: str | None = None):
    """설정으로부터 저장소/백엔드/카탈로그를 구성한 JobTracker"""
    engine = create_engine()
    try:
        await init_db(engine)
        session_maker = create_session_maker(engine)
        tracker = JobTracker(
            store=JobStore(session_maker),
            backend=create_job_backend(backend_mode),
            environments=EnvironmentRegistry(),
        )
        yield tracker
    finally:
        await close_db(engine)


async def _watch(tracker: JobTracker, interval: float) -> int:
    printed = 0
    while True:
        status = await tracker.poll()
        if status.is_idle:
            print("No job.", file=sys.stderr)
            return 0

        # 출력 파일이 다시 생성된 경우 처음부터 출력
        if len(status.output) < printed:
            printed = 0
        sys.stdout.write(status.output[printed:])
        sys.stdout.flush()
        printed = len(status.output)

        if not status.is_running:
            return 0
        await asyncio.sleep(interval)


async def run(args: argparse.Namespace) -> int:
    async with open_tracker(args.backend) as tracker:
        if args.action == "launch":
            command = args.command[0] if len(args.command) == 1 else args.command
            receipt = await tracker.launch(command)
            _print_json(receipt.model_dump(mode="json"))
        elif args.action == "trigger":
            receipt = await tracker.trigger(args.environment, args.command_kind)
            _print_json(receipt.model_dump(mode="json"))
        elif args.action == "status":
            status = await tracker.poll()
            _print_json(status.to_response())
        elif args.action == "watch":
            interval = args.interval if args.interval is not None else settings.poll_interval_seconds
            return await _watch(tracker, interval)
        elif args.action == "cancel":
            await tracker.cancel()
            _print_json({"cancelled": True})
        elif args.action == "clear":
            await tracker.clear()
            _print_json({"cleared": True})
        elif args.action == "environments":
            _print_json([env.model_dump(mode="json") for env in tracker.list_environments()])
        elif args.action == "health":
            database_ok = await check_database_connection(tracker.store.session_maker)
            backend_health = tracker.backend.health()
            _print_json({"database": "healthy" if database_ok else "unhealthy", "backend": backend_health})
            return 0 if database_ok else 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """메인 함수"""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(settings.log_level, settings.log_format)

    try:
        return asyncio.run(run(args))
    except LaunchFailure as e:
        print(e.diagnostic or str(e), file=sys.stderr)
        return 1
    except PushJobError as e:
        print(str(e), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
