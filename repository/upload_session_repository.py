# repository/upload_session_repository.py
from datetime import datetime, timezone
from typing import Final, Optional
from redis.asyncio import Redis
from config.cache import get_redis
from config.settings import settings
from model.upload import UploadMetadata, UploadSession
from repository.namespaces import UPLOADS

KEY_PREFIX: Final[str] = UPLOADS


class UploadSessionRepository:
    """
    Redis-backed bookkeeping for resumable uploads, keyed by upload id.

    Flow:
    - The hash holds the declared length and metadata only. The byte offset is NOT stored here:
      it is the size of the partial file on disk, so it can never run ahead of durable bytes.
    - TTL = idle window. Every accepted chunk calls touch(); an idle session simply expires
      and the sweeper deletes the orphaned partial file afterwards.
    """

    def __init__(self, ttl_seconds: Optional[int] = None) -> None:
        self._ttl = int(ttl_seconds or settings.UPLOAD_IDLE_TTL_SECONDS)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    @staticmethod
    async def _client() -> Redis:
        return await get_redis()

    @staticmethod
    def _key(upload_id: str) -> str:
        return f"{KEY_PREFIX}:{upload_id}"

    async def create(self, session: UploadSession) -> None:
        r = await self._client()
        meta = session.metadata
        mapping = {
            "id": session.id,
            "total_size": str(session.totalSize),
            "project_id": meta.projectId,
            "target_folder_path": meta.targetFolderPath,
            "original_filename": meta.originalFilename,
            "owner_id": meta.ownerId,
            "mime_type": meta.mimeType or "",
            "created_at": session.createdAt.isoformat(),
        }
        await r.hset(self._key(session.id), mapping=mapping)
        await r.expire(self._key(session.id), self._ttl)

    async def get(self, upload_id: str, *, byte_offset: int = 0) -> Optional[UploadSession]:
        if not upload_id:
            return None
        r = await self._client()
        h = await r.hgetall(self._key(upload_id))
        if not h:
            return None

        def _s(key: str, default: str = "") -> str:
            v = h.get(key)
            if v is None:
                return default
            return v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)

        try:
            created = datetime.fromisoformat(_s("created_at"))
        except ValueError:
            created = datetime.now(timezone.utc)

        return UploadSession(
            id=_s("id") or upload_id,
            byteOffset=byte_offset,
            totalSize=int(_s("total_size", "0") or 0),
            metadata=UploadMetadata(
                projectId=_s("project_id"),
                targetFolderPath=_s("target_folder_path", ".") or ".",
                originalFilename=_s("original_filename"),
                ownerId=_s("owner_id"),
                mimeType=_s("mime_type") or None,
            ),
            createdAt=created,
        )

    async def exists(self, upload_id: str) -> bool:
        r = await self._client()
        return bool(await r.exists(self._key(upload_id)))

    async def touch(self, upload_id: str) -> bool:
        r = await self._client()
        return bool(await r.expire(self._key(upload_id), self._ttl))

    async def delete(self, upload_id: str) -> int:
        if not upload_id:
            return 0
        r = await self._client()
        return int(await r.delete(self._key(upload_id)))
