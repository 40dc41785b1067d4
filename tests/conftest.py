"""Shared test fixtures."""

import os
import shutil
import stat
from pathlib import Path

# Settings are read at import time.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ALLOWED_ORIGIN", "http://localhost:3000")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_TIMES", "1000")
os.environ.setdefault("RATE_LIMIT_SECONDS", "60")
os.environ.setdefault("MAX_FILE_MB", "20")
os.environ.setdefault("TRUST_PROXY", "false")

import fakeredis
import fakeredis.aioredis
import httpx
import pytest

from config import cache
from config.settings import BASE_DIR, settings
from core.git import GitRunner
from core.locks import RepoLocks
from core.paths import RepoLayout
from core.task_queue import TaskQueue

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")

CENTRAL_HOOK = BASE_DIR / "hooks" / "pre-receive"


def write_hook(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def storage(tmp_path: Path, monkeypatch) -> Path:
    """Point every storage directory at tmp_path."""
    dirs = {
        "REPOS_DIR": tmp_path / "repos",
        "WORKTREES_DIR": tmp_path / "worktrees",
        "TUS_DIR": tmp_path / "uploads" / "tus",
        "STAGING_DIR": tmp_path / "uploads" / "completed",
        "WORK_DIR": tmp_path / "work",
    }
    for name, path in dirs.items():
        path.mkdir(parents=True, exist_ok=True)
        monkeypatch.setattr(settings, name, str(path))
    monkeypatch.setattr(settings, "HOOK_SCRIPT_PATH", str(CENTRAL_HOOK))
    return tmp_path


@pytest.fixture
async def redis_client():
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    cache.use_redis(client)
    yield client
    cache.use_redis(None)
    await client.aclose()


@pytest.fixture
def layout(storage: Path) -> RepoLayout:
    return RepoLayout.from_settings()


@pytest.fixture
def git() -> GitRunner:
    return GitRunner(timeout=30)


@pytest.fixture
def locks() -> RepoLocks:
    return RepoLocks()


@pytest.fixture
def tasks():
    """A queue that is never started: tests drive handlers directly or start it themselves."""
    queue = TaskQueue(workers=1, retention_seconds=3600, max_retained=100)
    yield queue
    queue.shutdown(wait=True, timeout=5)


@pytest.fixture
def services(storage: Path, redis_client):
    from service.bootstrap import build_services

    built = build_services()
    built.tasks.start()
    yield built
    built.tasks.shutdown(wait=True, timeout=30)


@pytest.fixture
async def client(services):
    """HTTP client over the ASGI app; app.state is wired by hand since the lifespan is not run."""
    from main import app

    app.state.tasks = services.tasks
    app.state.uploads = services.uploads
    app.state.provisioner = services.provisioner
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def owner_headers():
    return {settings.IDENTITY_HEADER: "user-1"}
