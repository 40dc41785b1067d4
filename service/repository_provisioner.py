# service/repository_provisioner.py
import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4
from config.settings import settings
from core.git import GitRunner
from core.locks import RepoLocks, repo_locks
from core.paths import HOOK_NAME, RepoLayout, repo_hash, validate_project_name
from core.task_queue import TaskQueue
from model.project import ProjectCreated, ProjectManifest
from model.task import CreateRepoPayload, TaskType
from util.errors import RepositoryError, StorageIOError, ValidationError
from util.functions import remove_tree
from util.timing import timed

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
_PROJECT_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class RepositoryProvisioner:
    """
    Creates one bare git repository per project.

    create_project() only validates, addresses and enqueues (HTTP answers 202 right away);
    provision() is the CREATE_REPO task body and does the actual work under the repo lock.
    """

    def __init__(
        self,
        tasks: TaskQueue,
        *,
        layout: Optional[RepoLayout] = None,
        git: Optional[GitRunner] = None,
        locks: Optional[RepoLocks] = None,
        work_dir: Optional[str] = None,
        hook_script: Optional[str] = None,
    ) -> None:
        self._tasks = tasks
        self._layout = layout or RepoLayout.from_settings()
        self._git = git or GitRunner()
        self._locks = locks or repo_locks
        self._work_dir = work_dir or settings.WORK_DIR
        self._hook_script = hook_script or settings.HOOK_SCRIPT_PATH

    def create_project(
        self, owner_id: str, project_name: str, *, project_id: Optional[str] = None
    ) -> ProjectCreated:
        if not owner_id:
            raise ValidationError("ownerId is required", code="missing_owner")
        name = validate_project_name(project_name)
        project_id = project_id or uuid4().hex
        if not _PROJECT_ID.match(project_id):
            raise ValidationError("Invalid project id", code="invalid_project_id")

        key = repo_hash(owner_id, project_id)
        manifest = ProjectManifest(
            ownerId=owner_id,
            projectId=project_id,
            projectName=name,
            createdAt=datetime.now(timezone.utc),
            schemaVersion=settings.MANIFEST_SCHEMA_VERSION,
        )
        task_id = self._tasks.add_task(
            TaskType.CREATE_REPO,
            CreateRepoPayload(
                ownerId=owner_id,
                projectId=project_id,
                projectName=name,
                repoHash=key,
                manifest=manifest.model_dump(mode="json"),
            ),
        )
        logger.info(
            "project.create owner=%s project=%s repo=%s task=%s", owner_id, project_id, key, task_id
        )
        return ProjectCreated(projectId=project_id, projectName=name, repoHash=key, taskId=task_id)

    # ---------------- CREATE_REPO task body ----------------

    def provision(self, payload: CreateRepoPayload) -> Dict[str, Any]:
        key = payload.repoHash
        if key != repo_hash(payload.ownerId, payload.projectId):
            raise ValidationError("repoHash does not match ownerId/projectId", code="repo_hash_mismatch")

        bare = self._layout.bare_path(key).absolute()
        with self._locks.hold(key):
            if bare.exists():
                # Repositories are created once and never recreated.
                raise RepositoryError(f"Repository {key} already exists", code="repo_exists")

            work: Optional[str] = None
            bare_started = False
            try:
                os.makedirs(self._work_dir, exist_ok=True)
                work = tempfile.mkdtemp(prefix="repo-init-", dir=self._work_dir)
                self._git.run(["init", "-q"], cwd=work)

                manifest_path = Path(work) / MANIFEST_FILE
                manifest_path.write_text(
                    json.dumps(payload.manifest, indent=2, sort_keys=True) + "\n", encoding="utf-8"
                )
                self._git.run(["add", "--", MANIFEST_FILE], cwd=work)
                self._git.run(
                    ["-c", "commit.gpgsign=false", "commit", "-q", "-m", "Initial commit: add manifest.json"],
                    cwd=work,
                )
                branch = self._git.current_branch(work)
                commit = self._git.head(work)

                bare.parent.mkdir(parents=True, exist_ok=True)
                bare_started = True
                with timed(logger, "repo.init_bare", repo=key):
                    self._git.run(["init", "-q", "--bare", str(bare)])
                self._install_hook(bare)

                self._git.run(["remote", "add", "origin", str(bare)], cwd=work)
                with timed(logger, "repo.push", repo=key, branch=branch):
                    self._git.run(
                        ["push", "-q", "origin", f"{branch}:refs/heads/{branch}"], cwd=work
                    )
                self._git.run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], cwd=str(bare))
            except OSError as e:
                self._rollback_bare(bare, key, bare_started)
                raise StorageIOError(f"Filesystem error while creating repository: {e}") from e
            except Exception:
                self._rollback_bare(bare, key, bare_started)
                raise
            finally:
                if work:
                    remove_tree(work)
                    logger.debug("repo.workdir.cleaned path=%s", work)

        logger.info("repo.created repo=%s branch=%s commit=%s", key, branch, commit)
        return {
            "projectId": payload.projectId,
            "repoHash": key,
            "repoPath": str(bare),
            "defaultBranch": branch,
            "commitHash": commit,
            "hooksInstalled": True,
        }

    def _install_hook(self, bare: Path) -> None:
        """Symlink (never copy) so edits to the central hook reach every repository."""
        source = Path(self._hook_script).absolute()
        if not source.is_file() or not os.access(source, os.X_OK):
            raise RepositoryError(
                f"Hook script {source} is missing or not executable", code="hook_missing"
            )
        hooks_dir = bare / "hooks"
        hooks_dir.mkdir(parents=True, exist_ok=True)
        os.symlink(source, hooks_dir / HOOK_NAME)
        logger.info("repo.hook.linked repo=%s target=%s", bare.name, source)

    @staticmethod
    def _rollback_bare(bare: Path, key: str, started: bool) -> None:
        if not started:
            return
        if remove_tree(bare):
            logger.warning("repo.rollback.removed repo=%s", key)
