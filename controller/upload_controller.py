# controller/upload_controller.py
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from model.api import UploadAcceptedResponse
from service.upload_service import UploadService
from util.constants import InternalURIs
from controller.controller_dependencies import (
    caller_identity,
    enforce_max_upload_size,
    get_upload_service,
    rate_limit,
)

upload_router = APIRouter(dependencies=[Depends(rate_limit)])


@upload_router.post(
    InternalURIs.UPLOAD,
    response_model=UploadAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(enforce_max_upload_size)],
)
async def upload_file(
    file: UploadFile = File(...),
    projectId: str = Form(...),
    targetFolderPath: str = Form("."),
    owner_id: str = Depends(caller_identity),
    uploads: UploadService = Depends(get_upload_service),
) -> UploadAcceptedResponse:
    try:
        task_id = await uploads.stage_direct_upload(
            owner_id=owner_id,
            project_id=projectId.strip(),
            filename=file.filename,
            mime_type=file.content_type,
            source=file,
            target_folder_path=targetFolderPath,
        )
    finally:
        await file.close()
    return UploadAcceptedResponse(taskId=task_id)
