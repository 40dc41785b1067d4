"""Tests for bare repository provisioning, run against the real git binary."""

import json
import os
from pathlib import Path

import pytest

from conftest import CENTRAL_HOOK, requires_git, write_hook
from core.paths import repo_hash
from model.task import CreateRepoPayload, TaskStatus, TaskType
from service.repository_provisioner import RepositoryProvisioner
from util.errors import RepositoryError, ValidationError

pytestmark = requires_git


@pytest.fixture
def provisioner(tasks, layout, git, locks, storage) -> RepositoryProvisioner:
    return RepositoryProvisioner(tasks, layout=layout, git=git, locks=locks)


def _payload(tasks, task_id: str) -> CreateRepoPayload:
    return CreateRepoPayload.model_validate(tasks.get_task(task_id).payload)


class TestCreateProject:
    def test_enqueues_create_repo(self, provisioner, tasks):
        created = provisioner.create_project("user-1", "  My Thesis ")

        assert created.projectName == "My Thesis"
        assert created.repoHash == repo_hash("user-1", created.projectId)
        task = tasks.get_task(created.taskId)
        assert task.type == TaskType.CREATE_REPO.value
        assert task.status == TaskStatus.pending
        assert task.payload["manifest"]["projectName"] == "My Thesis"
        assert task.payload["manifest"]["schemaVersion"] == 1

    @pytest.mark.parametrize("name", ["", "../evil", "x" * 101])
    def test_rejects_bad_names(self, provisioner, tasks, name):
        with pytest.raises(ValidationError):
            provisioner.create_project("user-1", name)
        assert tasks.list_tasks() == []

    def test_rejects_bad_project_id(self, provisioner):
        with pytest.raises(ValidationError):
            provisioner.create_project("user-1", "Thesis", project_id="../x")


class TestProvision:
    def test_creates_bare_repo_with_manifest_and_hook(self, provisioner, tasks, layout, git, storage):
        created = provisioner.create_project("user-1", "Thesis", project_id="thesis-1")
        result = provisioner.provision(_payload(tasks, created.taskId))

        bare = layout.bare_path(created.repoHash)
        assert result["repoHash"] == created.repoHash
        assert result["repoPath"] == str(bare.absolute())
        assert result["hooksInstalled"] is True
        assert len(result["commitHash"]) == 40

        assert git.output(["rev-parse", "--is-bare-repository"], cwd=str(bare)) == "true"
        branch = result["defaultBranch"]
        assert git.output(["symbolic-ref", "HEAD"], cwd=str(bare)) == f"refs/heads/{branch}"
        assert git.output(["rev-parse", branch], cwd=str(bare)) == result["commitHash"]
        assert git.output(["log", "--format=%an", "-1", branch], cwd=str(bare)) == "docvault automation"

        manifest = json.loads(git.output(["show", f"{branch}:manifest.json"], cwd=str(bare)))
        assert manifest["ownerId"] == "user-1"
        assert manifest["projectId"] == "thesis-1"
        assert manifest["projectName"] == "Thesis"
        assert manifest["schemaVersion"] == 1

        hook = layout.hook_path(created.repoHash)
        assert hook.is_symlink()
        assert Path(os.readlink(hook)) == CENTRAL_HOOK.absolute()

        # The throwaway working directory is gone.
        assert list((storage / "work").iterdir()) == []

    def test_existing_repository_is_never_recreated(self, provisioner, tasks, layout):
        created = provisioner.create_project("user-1", "Thesis", project_id="thesis-1")
        payload = _payload(tasks, created.taskId)
        first = provisioner.provision(payload)

        with pytest.raises(RepositoryError) as exc:
            provisioner.provision(payload)
        assert exc.value.code == "repo_exists"
        assert layout.bare_path(created.repoHash).is_dir()
        assert first["commitHash"]

    def test_hash_mismatch_is_rejected(self, provisioner, tasks, layout):
        created = provisioner.create_project("user-1", "Thesis")
        payload = _payload(tasks, created.taskId).model_copy(update={"repoHash": "0" * 64})
        with pytest.raises(ValidationError):
            provisioner.provision(payload)
        assert not layout.bare_path("0" * 64).exists()

    def test_declining_hook_rolls_back(self, tasks, layout, git, locks, storage):
        """Scenario: the hook refuses the initial push, so nothing is left behind."""
        hook = write_hook(storage / "hooks" / "pre-receive", "#!/bin/sh\nexit 1\n")
        provisioner = RepositoryProvisioner(
            tasks, layout=layout, git=git, locks=locks, hook_script=str(hook)
        )
        created = provisioner.create_project("user-1", "Thesis")

        with pytest.raises(RepositoryError):
            provisioner.provision(_payload(tasks, created.taskId))

        assert not layout.bare_path(created.repoHash).exists()
        assert list((storage / "work").iterdir()) == []

    def test_missing_hook_script_rolls_back(self, tasks, layout, git, locks, storage):
        provisioner = RepositoryProvisioner(
            tasks, layout=layout, git=git, locks=locks, hook_script=str(storage / "nope")
        )
        created = provisioner.create_project("user-1", "Thesis")

        with pytest.raises(RepositoryError) as exc:
            provisioner.provision(_payload(tasks, created.taskId))
        assert exc.value.code == "hook_missing"
        assert not layout.bare_path(created.repoHash).exists()

    def test_runs_as_a_queued_task(self, provisioner, tasks, layout):
        tasks.register(TaskType.CREATE_REPO, CreateRepoPayload, provisioner.provision)
        tasks.start()

        created = provisioner.create_project("user-1", "Thesis")
        task = tasks.wait(created.taskId, timeout=30)

        assert task.status == TaskStatus.success
        assert task.result["repoHash"] == created.repoHash
        assert layout.describe(created.repoHash).hooks_installed


class TestCentralHook:
    def test_rejects_non_fast_forward_push(self, provisioner, tasks, layout, git, tmp_path):
        created = provisioner.create_project("user-1", "Thesis")
        result = provisioner.provision(_payload(tasks, created.taskId))
        bare = str(layout.bare_path(created.repoHash).absolute())
        branch = result["defaultBranch"]

        clone = str(tmp_path / "clone")
        git.run(["clone", "-q", bare, clone])
        (Path(clone) / "manifest.json").write_text("{}\n")
        git.run(["-c", "commit.gpgsign=false", "commit", "-q", "--amend", "-am", "rewrite"], cwd=clone)

        with pytest.raises(RepositoryError):
            git.run(["push", "-q", "--force", "origin", f"HEAD:refs/heads/{branch}"], cwd=clone)
        with pytest.raises(RepositoryError):
            git.run(["push", "-q", "origin", f":refs/heads/{branch}"], cwd=clone)
        assert git.output(["rev-parse", branch], cwd=bare) == result["commitHash"]
