# service/asset_ingestion_service.py
import logging
import mimetypes
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple
from config.settings import settings
from core.git import GitIdentity, GitRunner
from core.locks import RepoLocks, repo_locks
from core.paths import (
    RepoLayout,
    repo_hash,
    resolve_inside,
    safe_segment,
    sanitize_filename,
    sanitize_folder_path,
)
from model.project import StagedAsset
from model.task import ProcessAssetPayload
from service.access_policy_service import AccessPolicy, RepositoryAccessPolicy
from util.errors import RepositoryError, StorageIOError, TransferError, ValidationError
from util.functions import move_file, remove_file, remove_tree
from util.timing import timed

logger = logging.getLogger(__name__)


class IngestState(str, Enum):
    STAGED = "STAGED"
    VALIDATED = "VALIDATED"
    MOVED = "MOVED"
    COMMITTED = "COMMITTED"


def normalize_mime(mime_type: Optional[str], filename: Optional[str]) -> Optional[str]:
    """Declared type without parameters, lower-cased; guessed from the filename when absent."""
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime:
        return mime
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed


def uploader_identity(owner_id: str) -> GitIdentity:
    name = "".join(ch for ch in owner_id if ch not in "<>\r\n").strip() or "unknown"
    return GitIdentity(name=name, email=f"{safe_segment(owner_id)}@{settings.GIT_USER_EMAIL_DOMAIN}")


class AssetIngestionService:
    """
    PROCESS_ASSET task body: STAGED -> VALIDATED -> MOVED -> COMMITTED.

    - STAGED: the temp file must still exist with exactly the declared size.
    - VALIDATED: size/MIME checks, then authorization + quota, then filename/folder sanitizing.
      Nothing outside the staging area has been touched yet.
    - MOVED: under the repo lock, the project's working clone is synced with the bare repository
      and the temp file is renamed into place.
    - COMMITTED: exactly that path is staged, committed (uploader = author) and pushed.

    Rollback is per state: a local commit is reset, a moved file is unstaged and removed (or the
    previously tracked version restored). The temp file is always removed on the way out.
    """

    def __init__(
        self,
        *,
        layout: Optional[RepoLayout] = None,
        git: Optional[GitRunner] = None,
        locks: Optional[RepoLocks] = None,
        policy: Optional[AccessPolicy] = None,
        max_bytes: Optional[int] = None,
        allowed_mime_types: Optional[Iterable[str]] = None,
    ) -> None:
        self._layout = layout or RepoLayout.from_settings()
        self._git = git or GitRunner()
        self._locks = locks or repo_locks
        self._policy = policy or RepositoryAccessPolicy(self._layout)
        self._max_bytes = int(max_bytes if max_bytes is not None else settings.max_file_bytes)
        self._allowed = {
            m.strip().lower()
            for m in (allowed_mime_types if allowed_mime_types is not None else settings.ALLOWED_MIME_TYPES)
        }

    def ingest(self, payload: ProcessAssetPayload) -> Dict[str, Any]:
        temp = Path(payload.tempFilePath)
        asset = StagedAsset(temp_path=str(temp), target_path=None, size=0, mime_type="")
        try:
            self._check_staged(payload, asset)
            relative = self._validate(payload, asset)
            key = repo_hash(payload.ownerId, payload.projectId)
            with self._locks.hold(key):
                return self._move_and_commit(payload, asset, key, relative)
        except Exception as e:
            logger.error(
                "ingest.failed project=%s file=%s err=%s msg=%s",
                payload.projectId,
                payload.originalFilename,
                type(e).__name__,
                e,
            )
            raise
        finally:
            if remove_file(temp):
                logger.info("ingest.temp.removed path=%s", temp)

    # ---------------- STAGED -> VALIDATED ----------------

    def _check_staged(self, payload: ProcessAssetPayload, asset: StagedAsset) -> None:
        temp = Path(asset.temp_path)
        try:
            if not temp.is_file():
                raise FileNotFoundError(str(temp))
            asset.size = temp.stat().st_size
        except FileNotFoundError:
            raise TransferError(
                "Staged upload no longer exists", code="staged_file_missing", http_status=410
            )
        if asset.size != payload.size:
            raise TransferError(
                f"Staged upload is {asset.size} bytes, expected {payload.size}",
                code="staged_file_truncated",
            )

    def _validate(self, payload: ProcessAssetPayload, asset: StagedAsset) -> str:
        if asset.size > self._max_bytes:
            raise ValidationError(
                f"File size {asset.size} exceeds maximum limit of {self._max_bytes} bytes",
                code="file_too_large",
                http_status=413,
            )
        mime = normalize_mime(payload.mimeType, payload.originalFilename)
        if not mime or mime not in self._allowed:
            raise ValidationError(
                f"File type {mime or 'unknown'} is not allowed",
                code="mime_not_allowed",
                http_status=415,
            )
        asset.mime_type = mime

        folder = sanitize_folder_path(payload.targetFolderPath)
        self._policy.authorize(payload.ownerId, payload.projectId, folder or ".")
        self._policy.check_quota(payload.ownerId, payload.projectId, asset.size)

        filename = sanitize_filename(payload.originalFilename)
        logger.info(
            "ingest.validated project=%s bytes=%d mime=%s", payload.projectId, asset.size, mime
        )
        return f"{folder}/{filename}" if folder else filename

    # ---------------- VALIDATED -> MOVED -> COMMITTED ----------------

    def _move_and_commit(
        self, payload: ProcessAssetPayload, asset: StagedAsset, key: str, relative: str
    ) -> Dict[str, Any]:
        worktree, branch = self._sync_worktree(key)
        wt = str(worktree)
        dest = resolve_inside(worktree, relative)
        if dest.relative_to(worktree.resolve()).parts[0] == ".git":
            raise ValidationError("Refusing to write into repository metadata", code="invalid_path")
        if dest.is_dir():
            raise ValidationError(f"{relative} is an existing folder", code="invalid_path")

        state = IngestState.VALIDATED
        tracked_before = self._git.is_tracked(wt, relative)
        previous_head = self._git.head(wt)
        try:
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                move_file(asset.temp_path, dest)
            except OSError as e:
                raise StorageIOError(f"Failed to move file into repository: {e}") from e
            state = IngestState.MOVED
            asset.target_path = str(dest)

            self._git.run(["add", "--", relative], cwd=wt)
            if not self._git.has_staged_changes(wt):
                logger.info("ingest.unchanged repo=%s path=%s", key, relative)
                return self._result(previous_head, relative, asset, key, unchanged=True)

            with timed(logger, "ingest.commit", repo=key):
                self._git.run(
                    [
                        "-c",
                        "commit.gpgsign=false",
                        "commit",
                        "-q",
                        "-m",
                        self._commit_message(payload, asset, relative, tracked_before),
                        "--",
                        relative,
                    ],
                    cwd=wt,
                    author=uploader_identity(payload.ownerId),
                )
            state = IngestState.COMMITTED
            commit = self._git.head(wt)
            if not commit:
                raise RepositoryError("Commit produced no HEAD")

            with timed(logger, "ingest.push", repo=key, branch=branch):
                self._git.run(["push", "-q", "origin", f"HEAD:refs/heads/{branch}"], cwd=wt)
        except Exception:
            self._rollback(state, wt, relative, dest, previous_head, tracked_before)
            raise

        logger.info("ingest.committed repo=%s path=%s commit=%s", key, relative, commit)
        return self._result(commit, relative, asset, key, unchanged=False)

    def _sync_worktree(self, key: str) -> Tuple[Path, str]:
        """Working clone of the bare repository, hard-reset to its default branch."""
        bare = self._layout.bare_path(key).absolute()
        worktree = self._layout.worktree_path(key).absolute()
        if not (bare / "HEAD").is_file():
            raise RepositoryError(f"Repository {key} does not exist", code="repo_missing")

        branch = self._git.current_branch(str(bare))
        if not (worktree / ".git").is_dir():
            remove_tree(worktree)
            worktree.parent.mkdir(parents=True, exist_ok=True)
            with timed(logger, "ingest.clone", repo=key):
                self._git.run(["clone", "-q", str(bare), str(worktree)])
        else:
            self._git.run(["fetch", "-q", "origin"], cwd=str(worktree))

        self._git.run(["checkout", "-q", "-B", branch, f"origin/{branch}"], cwd=str(worktree))
        self._git.run(["reset", "-q", "--hard", f"origin/{branch}"], cwd=str(worktree))
        self._git.run(["clean", "-q", "-fd"], cwd=str(worktree))
        return worktree, branch

    def _rollback(
        self,
        state: IngestState,
        wt: str,
        relative: str,
        dest: Path,
        previous_head: Optional[str],
        tracked_before: bool,
    ) -> None:
        """Best effort: failures here are logged, the original error is what the task records."""
        try:
            if state == IngestState.COMMITTED and previous_head:
                self._git.run(["reset", "-q", "--hard", previous_head], cwd=wt)
                logger.warning("ingest.rollback.reset head=%s", previous_head)
            elif state == IngestState.MOVED:
                self._git.run(["reset", "-q", "--", relative], cwd=wt, check=False)
                if tracked_before:
                    self._git.run(["checkout", "-q", "--", relative], cwd=wt)
                    logger.warning("ingest.rollback.restored path=%s", relative)
                elif remove_file(dest):
                    logger.warning("ingest.rollback.removed path=%s", relative)
        except Exception as e:
            logger.error("ingest.rollback.error path=%s err=%s", relative, type(e).__name__)

    @staticmethod
    def _commit_message(
        payload: ProcessAssetPayload, asset: StagedAsset, relative: str, tracked_before: bool
    ) -> str:
        original = " ".join((payload.originalFilename or "").split())
        verb = "Update" if tracked_before else "Add"
        return (
            f"{verb} {relative}\n\n"
            f"Original-Filename: {original}\n"
            f"Uploaded-By: {payload.ownerId}\n"
            f"Size: {asset.size}\n"
            f"Content-Type: {asset.mime_type}\n"
        )

    @staticmethod
    def _result(
        commit: Optional[str], relative: str, asset: StagedAsset, key: str, *, unchanged: bool
    ) -> Dict[str, Any]:
        return {
            "commitHash": commit,
            "relativePath": relative,
            "size": asset.size,
            "mimeType": asset.mime_type,
            "repoHash": key,
            "unchanged": unchanged,
        }
