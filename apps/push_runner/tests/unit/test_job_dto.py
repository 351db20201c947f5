from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from models.job_dto import DeployTarget, JobStatusView


@pytest.mark.unit
def test_idle_response_shape():
    assert JobStatusView.idle().to_response() == {"is_running": False, "output": ""}


@pytest.mark.unit
def test_running_response_includes_job_fields():
    view = JobStatusView(
        is_running=True,
        output="step 1\n",
        command="echo hello",
        started_at=datetime(2024, 7, 19, 9, 0, tzinfo=UTC),
        handle={"pid": 10},
        process_id="cmd_1",
    )

    payload = view.to_response()

    assert payload["is_running"] is True
    assert payload["command"] == "echo hello"
    assert payload["started_at"].startswith("2024-07-19T09:00:00")
    assert payload["completed_at"] is None
    assert view.duration_seconds is None


@pytest.mark.unit
def test_duration_seconds():
    view = JobStatusView(
        process_id="cmd_1",
        started_at=datetime(2024, 7, 19, 9, 0, tzinfo=UTC),
        completed_at=datetime(2024, 7, 19, 9, 1, 30, tzinfo=UTC),
    )

    assert view.is_completed
    assert view.duration_seconds == 90


@pytest.mark.unit
@pytest.mark.parametrize("kind", ["", "a b", "aws;rm", "x:y"])
def test_deploy_target_rejects_unsafe_command_kind(kind):
    with pytest.raises(ValidationError):
        DeployTarget(org="acme", name="site", command_kind=kind)
