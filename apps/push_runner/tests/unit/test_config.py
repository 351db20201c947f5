from pathlib import Path

import pytest
from pydantic import ValidationError

import config
from config import Settings
from infrastructure.environments import EnvironmentRegistry


@pytest.mark.unit
def test_defaults():
    s = Settings(_env_file=None)

    assert s.job_backend_mode == "detached"
    assert s.systemd_unit == "deploy-build"
    assert s.manager_timeout_seconds == 10.0
    assert s.database_url.startswith("sqlite+aiosqlite://")


@pytest.mark.unit
def test_backend_mode_is_normalized():
    assert Settings(_env_file=None, job_backend_mode=" Systemd ").job_backend_mode == "systemd"


@pytest.mark.unit
def test_unknown_backend_mode_is_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, job_backend_mode="docker")


@pytest.mark.unit
def test_environment_variables_override(monkeypatch):
    monkeypatch.setenv("JOB_BACKEND_MODE", "systemd")
    monkeypatch.setenv("SYSTEMD_UNIT", "site-build")

    s = Settings(_env_file=None)

    assert s.job_backend_mode == "systemd"
    assert s.systemd_unit == "site-build"


@pytest.mark.unit
def test_default_environments_dir_is_the_bundled_catalog():
    s = Settings(_env_file=None)

    registry = EnvironmentRegistry(s.environments_dir)

    assert Path(s.environments_dir) == Path(config.__file__).resolve().parent / "environments"
    assert {env.key for env in registry.list()} >= {"dev", "prod"}
