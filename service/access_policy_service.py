# service/access_policy_service.py
import logging
from typing import Optional, Protocol
from config.settings import settings
from core.paths import RepoLayout, repo_hash
from util.errors import AuthorizationError
from util.functions import dir_size

logger = logging.getLogger(__name__)


class AccessPolicy(Protocol):
    """
    Authorization + quota collaborator consulted before any ingestion touches the filesystem.
    Implementations raise AuthorizationError to deny.
    """

    def authorize(self, owner_id: str, project_id: str, target_folder: str) -> None: ...

    def check_quota(self, owner_id: str, project_id: str, size: int) -> None: ...


class RepositoryAccessPolicy:
    """
    Default policy backed by the on-disk layout:
    - authorize: the project's bare repository must exist at repoHash(owner, project). The owner
      is part of the hash, so a caller can only ever reach repositories created for them.
    - check_quota: current bare repository size + the upload must fit PROJECT_QUOTA_MB.
    """

    def __init__(
        self, layout: Optional[RepoLayout] = None, quota_bytes: Optional[int] = None
    ) -> None:
        self._layout = layout or RepoLayout.from_settings()
        self._quota = int(quota_bytes if quota_bytes is not None else settings.project_quota_bytes)

    def authorize(self, owner_id: str, project_id: str, target_folder: str) -> None:
        repo = self._layout.describe(repo_hash(owner_id, project_id))
        if repo is None:
            logger.warning(
                "acl.denied owner=%s project=%s folder=%s", owner_id, project_id, target_folder
            )
            raise AuthorizationError(
                f"User {owner_id} does not have access to project {project_id}",
                code="project_forbidden",
            )

    def check_quota(self, owner_id: str, project_id: str, size: int) -> None:
        used = dir_size(self._layout.bare_path(repo_hash(owner_id, project_id)))
        if used + size > self._quota:
            logger.warning(
                "acl.quota.exceeded project=%s used=%d incoming=%d quota=%d",
                project_id,
                used,
                size,
                self._quota,
            )
            raise AuthorizationError(
                f"Upload exceeds the storage quota for project {project_id}",
                code="quota_exceeded",
                http_status=413,
            )
