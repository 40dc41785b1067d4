# core/git.py
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
from config.settings import settings
from util.errors import RepositoryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitIdentity:
    name: str
    email: str


def automation_identity() -> GitIdentity:
    return GitIdentity(settings.GIT_AUTOMATION_NAME, settings.GIT_AUTOMATION_EMAIL)


class GitRunner:
    """
    Thin wrapper around the git CLI.

    Every call is an argv list (never a shell string), runs with a timeout and
    raises RepositoryError on a non-zero exit, a missing binary or a timeout.
    Blocking: call it from worker threads only.
    """

    def __init__(self, binary: Optional[str] = None, timeout: Optional[int] = None) -> None:
        self.binary = binary or settings.GIT_BINARY
        self.timeout = timeout or settings.GIT_TIMEOUT_SECONDS

    def _env(
        self, author: Optional[GitIdentity], committer: Optional[GitIdentity]
    ) -> Dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["LC_ALL"] = "C"
        committer = committer or automation_identity()
        author = author or committer
        env["GIT_AUTHOR_NAME"] = author.name
        env["GIT_AUTHOR_EMAIL"] = author.email
        env["GIT_COMMITTER_NAME"] = committer.name
        env["GIT_COMMITTER_EMAIL"] = committer.email
        return env

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[str] = None,
        check: bool = True,
        author: Optional[GitIdentity] = None,
        committer: Optional[GitIdentity] = None,
    ) -> subprocess.CompletedProcess:
        cmd: List[str] = [self.binary, *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                env=self._env(author, committer),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise RepositoryError(f"git binary not found: {self.binary}")
        except subprocess.TimeoutExpired:
            raise RepositoryError(
                f"git {args[0] if args else ''} timed out after {self.timeout}s"
            )

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            logger.error(
                "git.error cmd=%s code=%d stderr=%s",
                args[0] if args else "",
                result.returncode,
                stderr[:500],
            )
            raise RepositoryError(
                f"git {' '.join(args[:2])} failed ({result.returncode}): {stderr}"
            )
        return result

    def output(self, args: Sequence[str], *, cwd: Optional[str] = None) -> str:
        return (self.run(args, cwd=cwd).stdout or "").strip()

    # ---------------- Porcelain helpers ----------------

    def current_branch(self, cwd: str, default: str = "main") -> str:
        res = self.run(["symbolic-ref", "--short", "HEAD"], cwd=cwd, check=False)
        branch = (res.stdout or "").strip()
        if res.returncode != 0 or not branch:
            logger.warning("git.branch.undetected cwd=%s fallback=%s", cwd, default)
            return default
        return branch

    def head(self, cwd: str) -> Optional[str]:
        res = self.run(["rev-parse", "--verify", "-q", "HEAD"], cwd=cwd, check=False)
        sha = (res.stdout or "").strip()
        return sha if res.returncode == 0 and sha else None

    def has_staged_changes(self, cwd: str) -> bool:
        res = self.run(["diff", "--cached", "--quiet"], cwd=cwd, check=False)
        if res.returncode not in (0, 1):
            raise RepositoryError(f"git diff --cached failed: {(res.stderr or '').strip()}")
        return res.returncode == 1

    def is_tracked(self, cwd: str, rel_path: str) -> bool:
        res = self.run(
            ["ls-files", "--error-unmatch", "--", rel_path], cwd=cwd, check=False
        )
        return res.returncode == 0
