import asyncio
import inspect

import pytest

from infrastructure.job_backend.base import JobBackend
from infrastructure.job_backend.systemd_backend import SystemdBackend
from models.job_dto import DeployTarget
from services.errors import BackendQueryError, InvalidCommand, LaunchFailure, ParseFailure


class _Systemctl:
    """Records systemctl invocations and replays canned (returncode, output) replies"""

    def __init__(self, replies=None):
        self.calls = []
        self.replies = replies or {}

    async def __call__(self, *args):
        self.calls.append(args)
        reply = self.replies.get(args[0], (0, ""))
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def backend(tmp_path):
    return SystemdBackend(
        unit="deploy-build",
        log_dir=tmp_path / "logs",
        systemctl_path="systemctl",
        timeout_seconds=1.0,
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_with_deploy_target(backend, tmp_path):
    systemctl = _Systemctl()
    backend._systemctl = systemctl
    target = DeployTarget(org="a:b", name="site", command_kind="aws", bucket="bkt")

    launch = await backend.start(target, "systemd_1")

    assert systemctl.calls == [("start", "deploy-build@a%3Ab:site:aws:bkt")]
    assert launch.handle == {
        "service_name": "deploy-build@a%3Ab:site:aws:bkt",
        "instance_id": "a%3Ab:site:aws:bkt",
    }
    assert launch.output_location == str(tmp_path / "logs" / "build-a%3Ab:site:aws:bkt.log")
    assert launch.artifacts == []
    assert launch.command == "deploy-build@a%3Ab:site:aws:bkt"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_with_legacy_command_keeps_command_line(backend):
    backend._systemctl = _Systemctl()
    command = "/opt/deploy-cloudflare.sh -o acme -n site"

    launch = await backend.start(command, "systemd_2")

    assert launch.command == command
    assert launch.handle["instance_id"] == "acme:site:cloudflare"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_unparseable_legacy_command(backend):
    backend._systemctl = _Systemctl()

    with pytest.raises(ParseFailure):
        await backend.start("echo hello", "systemd_3")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_rejects_argv(backend):
    with pytest.raises(InvalidCommand):
        await backend.start(["echo", "hello"], "systemd_4")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_failure_carries_manager_output(backend):
    backend._systemctl = _Systemctl(
        {"start": (5, "Failed to start deploy-build@acme:site:aws.service: Unit not found.")}
    )

    with pytest.raises(LaunchFailure) as exc_info:
        await backend.start(DeployTarget(org="acme", name="site", command_kind="aws"), "systemd_5")

    assert exc_info.value.diagnostic.endswith("Unit not found.")
    assert "Failed to start systemd service" in str(exc_info.value)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_manager_unreachable_is_launch_failure(backend):
    backend._systemctl = _Systemctl({"start": BackendQueryError("systemctl missing")})

    with pytest.raises(LaunchFailure):
        await backend.start(DeployTarget(org="acme", name="site"), "systemd_6")


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("state", "alive"),
    [
        ("active", True),
        ("activating", True),
        ("inactive", False),
        ("failed", False),
        ("deactivating", False),
    ],
)
async def test_is_alive_states(backend, state, alive):
    returncode = 0 if alive else 3
    backend._systemctl = _Systemctl({"is-active": (returncode, state)})

    assert await backend.is_alive({"service_name": "deploy-build@acme:site:aws"}) is alive


@pytest.mark.unit
@pytest.mark.asyncio
async def test_is_alive_unrecognised_output_raises(backend):
    backend._systemctl = _Systemctl({"is-active": (1, "Failed to connect to bus")})

    with pytest.raises(BackendQueryError):
        await backend.is_alive({"service_name": "deploy-build@acme:site:aws"})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_is_alive_propagates_query_error(backend):
    backend._systemctl = _Systemctl({"is-active": BackendQueryError("timed out")})

    with pytest.raises(BackendQueryError):
        await backend.is_alive({"service_name": "deploy-build@acme:site:aws"})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_terminate_is_fire_and_forget(backend):
    systemctl = _Systemctl({"stop": (1, "permission denied")})
    backend._systemctl = systemctl

    await backend.terminate({"service_name": "deploy-build@acme:site:aws"})

    assert systemctl.calls == [("stop", "--no-block", "deploy-build@acme:site:aws")]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_never_deletes_manager_log(backend, tmp_path):
    log = tmp_path / "logs" / "build-acme:site:aws.log"
    log.parent.mkdir(parents=True)
    log.write_text("building...\n")

    backend.cleanup([str(log)])

    assert log.exists()
    assert await backend.read_output(str(log)) == "building...\n"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_systemctl_missing_binary_is_query_error(tmp_path):
    backend = SystemdBackend(
        log_dir=tmp_path, systemctl_path=str(tmp_path / "no-systemctl"), timeout_seconds=1.0
    )

    with pytest.raises(BackendQueryError):
        await backend._systemctl("is-active", "deploy-build@x:y:z")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_systemctl_timeout_is_query_error(tmp_path):
    slow = tmp_path / "slow-systemctl"
    slow.write_text("#!/bin/sh\nexec sleep 5\n")
    slow.chmod(0o755)
    backend = SystemdBackend(log_dir=tmp_path, systemctl_path=str(slow), timeout_seconds=0.2)

    with pytest.raises(BackendQueryError):
        await asyncio.wait_for(backend._systemctl("is-active", "x"), timeout=3)


@pytest.mark.unit
def test_process_id_prefix(backend):
    assert backend.new_process_id().startswith("systemd_")


@pytest.mark.unit
def test_cleanup_signature_matches_base():
    override = inspect.signature(SystemdBackend.cleanup)
    base = inspect.signature(JobBackend.cleanup)

    assert override.parameters["artifacts"].annotation == base.parameters["artifacts"].annotation
