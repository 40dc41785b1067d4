# service/upload_service.py
import asyncio
import logging
import os
import re
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterable, Dict, Optional, Set
from uuid import uuid4
from config.settings import settings
from core.locks import SessionLocks
from core.paths import sanitize_folder_path, staging_file
from core.task_queue import TaskQueue
from model.task import ProcessAssetPayload, TaskType
from model.upload import UploadMetadata, UploadReceipt, UploadSession
from repository.upload_session_repository import UploadSessionRepository
from util.errors import IngestError, TransferError, ValidationError
from util.functions import move_file, remove_file
from util.timing import timed

logger = logging.getLogger(__name__)

_UPLOAD_ID = re.compile(r"^[0-9a-f]{32}$")


def _not_found(upload_id: str) -> TransferError:
    return TransferError(
        f"Upload {upload_id} not found", code="upload_not_found", http_status=404
    )


def _too_large(limit: int) -> ValidationError:
    return ValidationError(
        f"Upload exceeds the maximum of {limit} bytes", code="file_too_large", http_status=413
    )


def _fsync_close(fh) -> None:
    try:
        fh.flush()
        os.fsync(fh.fileno())
    finally:
        fh.close()


def _truncate(fh, size: int) -> None:
    fh.flush()
    os.ftruncate(fh.fileno(), size)


def _touch_empty(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "xb") as fh:
        fh.flush()
        os.fsync(fh.fileno())


class UploadService:
    """
    Receives uploads and hands completed files to the task queue.

    Resumable path (tus 1.0.0):
    - create_session(): random internal id, bookkeeping in Redis, empty partial file on disk.
    - append_chunk(): serialized per session; the claimed offset must equal the partial file size,
      accepted bytes are appended + fsync'ed, then the completion hook runs when offset == total.
    - completion hook: move into STAGING_DIR/<date>/<owner>/, drop bookkeeping, enqueue PROCESS_ASSET.
      Any failure deletes the moved file and surfaces as a 500 so the client re-uploads.

    Direct path: stage_direct_upload() copies a multipart file part in bounded chunks, then enqueues
    the same PROCESS_ASSET payload.

    All disk I/O runs through asyncio.to_thread; the event loop only shuffles chunks.
    """

    def __init__(
        self,
        tasks: TaskQueue,
        sessions: Optional[UploadSessionRepository] = None,
        *,
        tus_dir: Optional[str] = None,
        staging_dir: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> None:
        self._tasks = tasks
        self._sessions = sessions or UploadSessionRepository()
        self._tus_dir = Path(tus_dir or settings.TUS_DIR)
        self._staging_dir = staging_dir or settings.STAGING_DIR
        self._max_bytes = int(max_bytes if max_bytes is not None else settings.max_file_bytes)
        self._locks = SessionLocks()

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def _partial_path(self, upload_id: str) -> Path:
        return self._tus_dir / upload_id

    def _expires_at(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self._sessions.ttl_seconds)

    # ---------------- Session creation ----------------

    async def create_session(
        self, *, owner_id: str, total_size: int, metadata: Dict[str, str]
    ) -> UploadReceipt:
        if total_size < 0:
            raise ValidationError("Upload-Length must be non-negative", code="invalid_length")
        if total_size > self._max_bytes:
            raise _too_large(self._max_bytes)

        filename = (metadata.get("filename") or "").strip()
        filetype = (metadata.get("filetype") or "").strip()
        project_id = (metadata.get("projectId") or "").strip()
        missing = [k for k, v in (("filename", filename), ("filetype", filetype), ("projectId", project_id)) if not v]
        if missing:
            raise ValidationError(
                f"Upload-Metadata is missing: {', '.join(missing)}", code="missing_metadata"
            )
        folder = sanitize_folder_path(metadata.get("targetFolderPath")) or "."

        session = UploadSession(
            id=uuid4().hex,
            byteOffset=0,
            totalSize=total_size,
            metadata=UploadMetadata(
                projectId=project_id,
                targetFolderPath=folder,
                originalFilename=filename,
                ownerId=owner_id,
                mimeType=filetype,
            ),
            createdAt=datetime.now(timezone.utc),
        )

        # Bookkeeping first: the sweeper only removes partial files that have none.
        await self._sessions.create(session)
        try:
            await asyncio.to_thread(_touch_empty, self._partial_path(session.id))
        except OSError:
            await self._sessions.delete(session.id)
            logger.error("upload.create.io.error id=%s", session.id, exc_info=True)
            raise
        logger.info(
            "upload.create id=%s owner=%s project=%s length=%d",
            session.id,
            owner_id,
            project_id,
            total_size,
        )

        task_id = None
        if total_size == 0:
            async with self._locks.hold(session.id):
                task_id = await self._complete(session)
        return UploadReceipt(session=session, taskId=task_id, expiresAt=self._expires_at())

    # ---------------- Query ----------------

    async def get_session(self, upload_id: str, owner_id: str) -> UploadSession:
        if not _UPLOAD_ID.match(upload_id or ""):
            raise _not_found(upload_id)
        path = self._partial_path(upload_id)
        try:
            offset = await asyncio.to_thread(os.path.getsize, path)
        except FileNotFoundError:
            offset = None

        session = await self._sessions.get(upload_id, byte_offset=offset or 0)
        if session is None:
            raise _not_found(upload_id)
        if offset is None:
            # Bookkeeping without bytes: nothing left to resume.
            await self._sessions.delete(upload_id)
            logger.warning("upload.partial.missing id=%s", upload_id)
            raise _not_found(upload_id)
        if session.metadata.ownerId != owner_id:
            logger.warning("upload.owner.mismatch id=%s", upload_id)
            raise _not_found(upload_id)
        return session

    # ---------------- Append ----------------

    async def append_chunk(
        self,
        upload_id: str,
        owner_id: str,
        claimed_offset: int,
        chunks: AsyncIterable[bytes],
    ) -> UploadReceipt:
        async with self._locks.hold(upload_id):
            session = await self.get_session(upload_id, owner_id)
            if claimed_offset != session.byteOffset:
                logger.warning(
                    "upload.offset.mismatch id=%s claimed=%d recorded=%d",
                    upload_id,
                    claimed_offset,
                    session.byteOffset,
                )
                raise TransferError(
                    f"Upload-Offset {claimed_offset} does not match recorded offset {session.byteOffset}",
                    code="offset_mismatch",
                    http_status=409,
                )

            written = await self._write_chunks(session, chunks)
            session.byteOffset += written
            await self._sessions.touch(upload_id)
            logger.info(
                "upload.append id=%s bytes=%d offset=%d length=%d",
                upload_id,
                written,
                session.byteOffset,
                session.totalSize,
            )

            task_id = None
            if session.complete:
                task_id = await self._complete(session)
            return UploadReceipt(session=session, taskId=task_id, expiresAt=self._expires_at())

    async def _write_chunks(self, session: UploadSession, chunks: AsyncIterable[bytes]) -> int:
        start = session.byteOffset
        remaining = session.totalSize - start
        written = 0
        fh = await asyncio.to_thread(open, self._partial_path(session.id), "ab")
        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                if written + len(chunk) > remaining:
                    # Never let a chunk run past Upload-Length: roll back to the start offset.
                    await asyncio.to_thread(_truncate, fh, start)
                    written = 0
                    raise ValidationError(
                        "Chunk exceeds the declared Upload-Length",
                        code="length_exceeded",
                        http_status=413,
                    )
                await asyncio.to_thread(fh.write, chunk)
                written += len(chunk)
        finally:
            # Bytes written before a client disconnect stay: they are part of the offset.
            await asyncio.to_thread(_fsync_close, fh)
        return written

    # ---------------- Termination ----------------

    async def terminate(self, upload_id: str, owner_id: str) -> None:
        async with self._locks.hold(upload_id):
            await self.get_session(upload_id, owner_id)
            await self._sessions.delete(upload_id)
            await asyncio.to_thread(remove_file, self._partial_path(upload_id))
        logger.info("upload.terminate id=%s", upload_id)

    # ---------------- Completion hook ----------------

    async def _complete(self, session: UploadSession) -> str:
        """Caller holds the session lock."""
        source = self._partial_path(session.id)
        meta = session.metadata
        dest: Optional[Path] = None
        moved = False
        try:
            dest = await asyncio.to_thread(staging_file, meta.ownerId, self._staging_dir)
            with timed(logger, "upload.stage", id=session.id):
                await asyncio.to_thread(move_file, source, dest)
            moved = True

            await self._sessions.delete(session.id)

            payload = ProcessAssetPayload(
                tempFilePath=str(dest),
                originalFilename=meta.originalFilename,
                projectId=meta.projectId,
                ownerId=meta.ownerId,
                targetFolderPath=meta.targetFolderPath,
                size=session.totalSize,
                mimeType=meta.mimeType,
            )
            task_id = self._enqueue(payload)
        except Exception as e:
            if moved and dest is not None:
                await asyncio.to_thread(remove_file, dest)
            logger.error(
                "upload.complete.error id=%s err=%s", session.id, type(e).__name__, exc_info=True
            )
            raise TransferError(
                "Upload finalization failed; please upload the file again",
                code="finalize_failed",
                http_status=500,
            ) from e

        logger.info(
            "upload.complete id=%s task=%s bytes=%d", session.id, task_id, session.totalSize
        )
        return task_id

    def _enqueue(self, payload: ProcessAssetPayload) -> str:
        return self._tasks.add_task(TaskType.PROCESS_ASSET, payload)

    # ---------------- Direct (non-resumable) path ----------------

    async def stage_direct_upload(
        self,
        *,
        owner_id: str,
        project_id: str,
        filename: Optional[str],
        mime_type: Optional[str],
        source: Any,
        target_folder_path: Optional[str] = None,
    ) -> str:
        """
        Copy `source` (anything with `async read(n)`, e.g. an UploadFile) to a staging file
        in bounded chunks, then enqueue PROCESS_ASSET. Returns the task id.
        """
        if not project_id:
            raise ValidationError("No project ID provided", code="missing_project")
        folder = sanitize_folder_path(target_folder_path) or "."

        dest = await asyncio.to_thread(staging_file, owner_id, self._staging_dir)
        size = 0
        try:
            fh = await asyncio.to_thread(open, dest, "xb")
            try:
                while True:
                    chunk = await source.read(settings.UPLOAD_COPY_CHUNK_BYTES)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self._max_bytes:
                        raise _too_large(self._max_bytes)
                    await asyncio.to_thread(fh.write, chunk)
            finally:
                await asyncio.to_thread(_fsync_close, fh)

            task_id = self._enqueue(
                ProcessAssetPayload(
                    tempFilePath=str(dest),
                    originalFilename=filename or "unnamed_file",
                    projectId=project_id,
                    ownerId=owner_id,
                    targetFolderPath=folder,
                    size=size,
                    mimeType=mime_type or None,
                )
            )
        except IngestError:
            await asyncio.to_thread(remove_file, dest)
            raise
        except Exception:
            await asyncio.to_thread(remove_file, dest)
            logger.error("upload.direct.error owner=%s project=%s", owner_id, project_id)
            raise

        logger.info(
            "upload.direct.ok owner=%s project=%s task=%s bytes=%d",
            owner_id,
            project_id,
            task_id,
            size,
        )
        return task_id

    # ---------------- Idle expiry ----------------

    async def expire_idle(self, now: Optional[float] = None) -> int:
        """
        Remove partial files whose bookkeeping has expired and that were not written to
        within the idle window. Returns the number of uploads removed.
        """
        if not self._tus_dir.is_dir():
            return 0
        now = now if now is not None else time.time()
        names = await asyncio.to_thread(os.listdir, self._tus_dir)
        removed = 0
        for name in names:
            if not _UPLOAD_ID.match(name):
                continue
            async with self._locks.hold(name):
                if await self._sessions.exists(name):
                    continue
                path = self._partial_path(name)
                try:
                    age = now - (await asyncio.to_thread(os.path.getmtime, path))
                except FileNotFoundError:
                    continue
                if age < self._sessions.ttl_seconds:
                    continue
                if await asyncio.to_thread(remove_file, path):
                    removed += 1
                    logger.info("upload.expire id=%s idle_s=%d", name, int(age))
        return removed

    def _claimed_staging_files(self) -> Set[str]:
        return {
            os.path.abspath(t.payload.get("tempFilePath", ""))
            for t in self._tasks.list_tasks()
            if not t.status.terminal and t.payload.get("tempFilePath")
        }

    def _sweep_staging(self, now: float) -> int:
        """
        Staged files outlive their task only when the task was lost (process restart).
        Anything older than the idle window that no pending/running task points at goes.
        """
        root = Path(self._staging_dir)
        if not root.is_dir():
            return 0
        claimed = self._claimed_staging_files()
        removed = 0
        for path in root.glob("*/*/*.tmp"):
            try:
                age = now - path.stat().st_mtime
            except FileNotFoundError:
                continue
            if age < self._sessions.ttl_seconds or os.path.abspath(path) in claimed:
                continue
            if remove_file(path):
                removed += 1
                logger.info("upload.staged.expire path=%s idle_s=%d", path, int(age))
        # Only past days: today's folders may be in use by staging_file().
        cutoff = datetime.fromtimestamp(now - self._sessions.ttl_seconds, timezone.utc).strftime("%Y-%m-%d")
        for day in root.iterdir():
            if not day.is_dir() or day.name >= cutoff:
                continue
            for folder in [*day.iterdir(), day]:
                try:
                    folder.rmdir()
                except OSError:
                    continue
        return removed

    async def expire_staged(self, now: Optional[float] = None) -> int:
        """Remove staged files no live PROCESS_ASSET task will ever pick up."""
        now = now if now is not None else time.time()
        return await asyncio.to_thread(self._sweep_staging, now)

    async def run_sweeper(self, interval_seconds: int) -> None:
        """Lifespan background loop; cancelled on shutdown."""
        while True:
            await asyncio.sleep(max(1, int(interval_seconds)))
            try:
                removed = await self.expire_idle()
                removed += await self.expire_staged()
                if removed:
                    logger.info("upload.sweep removed=%d", removed)
            except Exception:
                logger.error("upload.sweep.error", exc_info=True)
