# controller/task_controller.py
from fastapi import APIRouter, Depends
from core.task_queue import TaskQueue
from model.api import TaskStatusResponse
from util.constants import InternalURIs
from util.enums import ErrorMessage
from util.errors import AppError
from controller.controller_dependencies import caller_identity, get_task_queue

task_router = APIRouter()


@task_router.get(InternalURIs.TASK, response_model=TaskStatusResponse)
async def get_task(
    task_id: str,
    owner_id: str = Depends(caller_identity),
    tasks: TaskQueue = Depends(get_task_queue),
) -> TaskStatusResponse:
    task = tasks.get_task(task_id)
    # Someone else's task looks exactly like a missing one.
    if task is None or task.payload.get("ownerId") != owner_id:
        info = ErrorMessage.TASK_NOT_FOUND.value
        raise AppError(info.message, info.http_status)
    return TaskStatusResponse.from_task(task)
