# controller/tus_controller.py
from typing import Dict
from fastapi import APIRouter, Depends, Request, Response, status
from core.tus import encode_metadata, http_date, parse_metadata, parse_non_negative_int
from model.upload import UploadReceipt
from service.upload_service import UploadService
from util.constants import (
    TUS_CONTENT_TYPE,
    TUS_EXTENSIONS,
    TUS_VERSION,
    InternalURIs,
    TusHeaders,
)
from util.enums import ErrorMessage
from util.errors import AppError
from controller.controller_dependencies import (
    caller_identity,
    get_upload_service,
    rate_limit,
    require_tus_version,
)

tus_router = APIRouter(dependencies=[Depends(rate_limit)])


def _tus_error(error: ErrorMessage) -> AppError:
    info = error.value
    return AppError(info.message, info.http_status, headers={TusHeaders.RESUMABLE: TUS_VERSION})


def _receipt_headers(receipt: UploadReceipt) -> Dict[str, str]:
    headers = {
        TusHeaders.RESUMABLE: TUS_VERSION,
        TusHeaders.UPLOAD_OFFSET: str(receipt.session.byteOffset),
    }
    if receipt.expiresAt is not None and not receipt.session.complete:
        headers[TusHeaders.UPLOAD_EXPIRES] = http_date(receipt.expiresAt)
    if receipt.taskId:
        headers[TusHeaders.TASK_ID] = receipt.taskId
    return headers


@tus_router.options(InternalURIs.TUS)
async def tus_options(uploads: UploadService = Depends(get_upload_service)) -> Response:
    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers={
            TusHeaders.RESUMABLE: TUS_VERSION,
            TusHeaders.VERSION: TUS_VERSION,
            TusHeaders.EXTENSION: TUS_EXTENSIONS,
            TusHeaders.MAX_SIZE: str(uploads.max_bytes),
        },
    )


@tus_router.post(InternalURIs.TUS, dependencies=[Depends(require_tus_version)])
async def tus_create(
    request: Request,
    owner_id: str = Depends(caller_identity),
    uploads: UploadService = Depends(get_upload_service),
) -> Response:
    length = parse_non_negative_int(request.headers.get(TusHeaders.UPLOAD_LENGTH))
    if length is None:
        raise _tus_error(ErrorMessage.INVALID_UPLOAD_LENGTH)
    metadata = parse_metadata(request.headers.get(TusHeaders.UPLOAD_METADATA))

    receipt = await uploads.create_session(owner_id=owner_id, total_size=length, metadata=metadata)

    headers = _receipt_headers(receipt)
    headers["Location"] = str(request.url_for("tus_head", upload_id=receipt.session.id))
    return Response(status_code=status.HTTP_201_CREATED, headers=headers)


@tus_router.head(InternalURIs.TUS_UPLOAD, name="tus_head")
async def tus_head(
    upload_id: str,
    owner_id: str = Depends(caller_identity),
    uploads: UploadService = Depends(get_upload_service),
) -> Response:
    session = await uploads.get_session(upload_id, owner_id)
    meta = session.metadata
    return Response(
        status_code=status.HTTP_200_OK,
        headers={
            TusHeaders.RESUMABLE: TUS_VERSION,
            TusHeaders.UPLOAD_OFFSET: str(session.byteOffset),
            TusHeaders.UPLOAD_LENGTH: str(session.totalSize),
            TusHeaders.UPLOAD_METADATA: encode_metadata(
                {
                    "filename": meta.originalFilename,
                    "filetype": meta.mimeType,
                    "projectId": meta.projectId,
                    "targetFolderPath": meta.targetFolderPath,
                }
            ),
            "Cache-Control": "no-store",
        },
    )


@tus_router.patch(InternalURIs.TUS_UPLOAD, dependencies=[Depends(require_tus_version)])
async def tus_patch(
    upload_id: str,
    request: Request,
    owner_id: str = Depends(caller_identity),
    uploads: UploadService = Depends(get_upload_service),
) -> Response:
    content_type = (request.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
    if content_type != TUS_CONTENT_TYPE:
        raise _tus_error(ErrorMessage.INVALID_CONTENT_TYPE)
    offset = parse_non_negative_int(request.headers.get(TusHeaders.UPLOAD_OFFSET))
    if offset is None:
        raise _tus_error(ErrorMessage.INVALID_UPLOAD_OFFSET)

    receipt = await uploads.append_chunk(upload_id, owner_id, offset, request.stream())
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=_receipt_headers(receipt))


@tus_router.delete(InternalURIs.TUS_UPLOAD, dependencies=[Depends(require_tus_version)])
async def tus_delete(
    upload_id: str,
    owner_id: str = Depends(caller_identity),
    uploads: UploadService = Depends(get_upload_service),
) -> Response:
    await uploads.terminate(upload_id, owner_id)
    return Response(
        status_code=status.HTTP_204_NO_CONTENT, headers={TusHeaders.RESUMABLE: TUS_VERSION}
    )
