"""
pytest configuration and fixtures for push runner tests
"""

import pytest
import pytest_asyncio

from infrastructure.database import close_db, create_engine, create_session_maker, init_db
from infrastructure.environments import EnvironmentRegistry
from infrastructure.job_backend import reset_job_backend_cache
from infrastructure.job_store import JobStore
from services.job_tracker import JobTracker
from tests.utils.mocks import FakeBackend, write_environment


@pytest.fixture
def test_settings(monkeypatch, tmp_path):
    """Point the global settings at a per-test scratch directory"""
    import config

    monkeypatch.setattr(config.settings, "environment", "test")
    monkeypatch.setattr(
        config.settings, "database_url", f"sqlite+aiosqlite:///{tmp_path}/push_runner.db"
    )
    monkeypatch.setattr(config.settings, "job_backend_mode", "detached")
    monkeypatch.setattr(config.settings, "job_temp_dir", str(tmp_path / "jobs"))
    monkeypatch.setattr(config.settings, "environments_dir", str(tmp_path / "environments"))
    monkeypatch.setattr(config.settings, "systemd_log_dir", str(tmp_path / "systemd-logs"))
    monkeypatch.setattr(config.settings, "poll_interval_seconds", 0.05)
    monkeypatch.setattr(config.settings, "log_format", "console")

    reset_job_backend_cache()
    yield config.settings
    reset_job_backend_cache()


# Database fixtures
@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed sqlite so separate sessions really are separate connections"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path}/jobs.db")
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_maker(db_engine):
    return create_session_maker(db_engine)


@pytest.fixture
def job_store(session_maker):
    return JobStore(session_maker)


# Backend / tracker fixtures
@pytest.fixture
def fake_backend(tmp_path):
    return FakeBackend(tmp_path / "fake-output")


@pytest.fixture
def environments_dir(tmp_path):
    directory = tmp_path / "environments"
    write_environment(
        directory,
        "prod",
        {
            "org": "acme",
            "name": "site",
            "bucket": "www.acme.example",
            "commands": {"aws": {"label": "Push to S3", "description": "Sync to S3"}},
        },
    )
    write_environment(directory, "dev", {"org": "acme", "name": "site"})
    return directory


@pytest.fixture
def tracker(job_store, fake_backend, environments_dir):
    return JobTracker(
        store=job_store,
        backend=fake_backend,
        environments=EnvironmentRegistry(environments_dir),
    )
