# controller/controller_dependencies.py
from fastapi import HTTPException, Request, Response
from fastapi_limiter.depends import RateLimiter
from config.settings import settings
from core.task_queue import TaskQueue
from service.repository_provisioner import RepositoryProvisioner
from service.upload_service import UploadService
from util.constants import TUS_VERSION, InternalURIs, TusHeaders
from util.enums import ErrorMessage
from util.errors import AppError

# Multipart framing around the file part.
MULTIPART_SLACK_BYTES = 64 * 1024

_limiter = RateLimiter(times=settings.RATE_LIMIT_TIMES, seconds=settings.RATE_LIMIT_SECONDS)


async def rate_limit(request: Request, response: Response) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        return
    await _limiter(request, response)


def get_task_queue(request: Request) -> TaskQueue:
    return request.app.state.tasks


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.uploads


def get_provisioner(request: Request) -> RepositoryProvisioner:
    return request.app.state.provisioner


def caller_identity(request: Request) -> str:
    # Verified upstream; this core only trusts the header.
    owner = (request.headers.get(settings.IDENTITY_HEADER) or "").strip()
    if not owner:
        info = ErrorMessage.MISSING_IDENTITY.value
        headers = None
        if request.url.path.startswith(InternalURIs.TUS):
            headers = {TusHeaders.RESUMABLE: TUS_VERSION}
        raise AppError(info.message, info.http_status, headers=headers)
    return owner


def require_tus_version(request: Request) -> None:
    version = request.headers.get(TusHeaders.RESUMABLE)
    if version != TUS_VERSION:
        info = ErrorMessage.UNSUPPORTED_TUS_VERSION.value
        raise AppError(
            info.message,
            info.http_status,
            headers={TusHeaders.RESUMABLE: TUS_VERSION, TusHeaders.VERSION: TUS_VERSION},
        )


async def enforce_max_upload_size(request: Request) -> None:
    # Fast pre-check via Content-Length; the streaming copy enforces the hard cap.
    max_bytes = settings.max_file_bytes + MULTIPART_SLACK_BYTES
    cl = request.headers.get("content-length")
    if cl and cl.isdigit() and int(cl) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail={
                "ok": False,
                "error": "file_too_large",
                "maxMb": settings.MAX_FILE_MB,
            },
        )
