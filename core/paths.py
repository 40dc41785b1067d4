# core/paths.py
import hashlib
import json
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Optional
from uuid import uuid4
from config.settings import settings
from model.project import Repository
from util.errors import ValidationError

HOOK_NAME: Final[str] = "pre-receive"
MAX_FILENAME_CHARS: Final[int] = 200

_FILENAME_DISALLOWED = re.compile(r"[^\w.\-() ]", re.UNICODE)
_REPEATED_UNDERSCORE = re.compile(r"_{2,}")
_REPEATED_DOTS = re.compile(r"\.{2,}")
_REPEATED_SPACE = re.compile(r"\s{2,}")
_FOLDER_SEGMENT = re.compile(r"^\w[\w.\-() ]{0,99}$", re.UNICODE)
_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
_PROJECT_NAME = re.compile(r"^[\w][\w .\-]{0,99}$", re.UNICODE)


def repo_hash(owner_id: str, project_id: str) -> str:
    """
    Deterministic, filesystem-safe repository key for (owner, project).
    The pair is JSON encoded first so ("a:b", "c") and ("a", "b:c") never collide.
    """
    if not owner_id or not project_id:
        raise ValidationError("ownerId and projectId are required to address a repository")
    raw = json.dumps([str(owner_id), str(project_id)], separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def safe_segment(value: str) -> str:
    """Readable path segment when already safe, else a short sha256 key."""
    if _SAFE_SEGMENT.match(value or ""):
        return value
    h = hashlib.sha256((value or "").encode("utf-8", errors="replace")).hexdigest()
    return f"sha256-{h[:16]}"


def sanitize_filename(filename: Optional[str]) -> str:
    """
    Single safe path segment from an untrusted filename:
    - anything outside letters/digits/space/._-() becomes "_" (path separators included)
    - repeated "_", ".", whitespace collapse to one
    - leading/trailing dots, spaces and underscores are stripped
    - overly long names are cut, keeping the extension
    - an empty result falls back to file_<ms>
    """
    name = (filename or "").strip()
    name = _FILENAME_DISALLOWED.sub("_", name)
    name = _REPEATED_UNDERSCORE.sub("_", name)
    name = _REPEATED_DOTS.sub(".", name)
    name = _REPEATED_SPACE.sub(" ", name)
    name = name.strip(" ._")

    if len(name) > MAX_FILENAME_CHARS:
        stem, ext = os.path.splitext(name)
        ext = ext[:20]
        name = stem[: MAX_FILENAME_CHARS - len(ext)].rstrip(" ._") + ext

    if not name:
        return f"file_{int(time.time() * 1000)}"
    return name


def sanitize_folder_path(folder: Optional[str]) -> str:
    """
    Normalize a repository-relative folder. "", "." and "/" mean the repository root ("").
    Rejects ".." and any segment outside the allow-list rather than rewriting it.
    """
    raw = (folder or "").replace("\\", "/")
    parts = []
    for seg in raw.split("/"):
        seg = seg.strip()
        if seg in ("", "."):
            continue
        if seg == "..":
            raise ValidationError(
                "targetFolderPath must not traverse upwards", code="invalid_folder"
            )
        if not _FOLDER_SEGMENT.match(seg):
            raise ValidationError(
                f"targetFolderPath segment not allowed: {seg!r}", code="invalid_folder"
            )
        parts.append(seg)
    return "/".join(parts)


def validate_project_name(name: Optional[str]) -> str:
    cleaned = _REPEATED_SPACE.sub(" ", (name or "").strip())
    if not _PROJECT_NAME.match(cleaned):
        raise ValidationError(
            "Invalid project name. Use letters, numbers, spaces, dots, underscores or hyphens.",
            code="invalid_project_name",
        )
    return cleaned


def resolve_inside(root: Path, relative: str) -> Path:
    """Join and resolve; the result must stay inside `root`."""
    base = root.resolve()
    target = (base / relative).resolve()
    if target != base and base not in target.parents:
        raise ValidationError("Resolved path escapes the repository", code="invalid_path")
    return target


def staging_file(
    owner_id: str, staging_dir: Optional[str] = None, now: Optional[datetime] = None
) -> Path:
    """STAGING_DIR/<YYYY-MM-DD>/<owner>/<uuid>.tmp, parent directories created."""
    now = now or datetime.now(timezone.utc)
    folder = Path(staging_dir or settings.STAGING_DIR) / now.strftime("%Y-%m-%d") / safe_segment(owner_id)
    folder.mkdir(parents=True, exist_ok=True)
    return folder / f"{uuid4().hex}.tmp"


@dataclass(frozen=True)
class RepoLayout:
    """Where a project's bare repository and working clone live on disk."""

    repos_dir: Path
    worktrees_dir: Path

    @classmethod
    def from_settings(cls) -> "RepoLayout":
        return cls(Path(settings.REPOS_DIR), Path(settings.WORKTREES_DIR))

    def bare_path(self, repo_hash_: str) -> Path:
        return self.repos_dir / f"{repo_hash_}.git"

    def worktree_path(self, repo_hash_: str) -> Path:
        return self.worktrees_dir / repo_hash_

    def hook_path(self, repo_hash_: str) -> Path:
        return self.bare_path(repo_hash_) / "hooks" / HOOK_NAME

    def describe(self, repo_hash_: str) -> Optional[Repository]:
        path = self.bare_path(repo_hash_)
        if not (path / "HEAD").is_file():
            return None
        return Repository(
            repo_hash=repo_hash_,
            path=str(path),
            hooks_installed=self.hook_path(repo_hash_).is_symlink(),
        )
