# model/api.py
from datetime import datetime
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field
from model.task import Task, TaskStatus


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class CreateProjectResponse(BaseModel):
    taskId: str
    projectId: str
    projectName: str
    status: Literal["queued"] = "queued"


class UploadAcceptedResponse(BaseModel):
    taskId: str
    message: str = "Upload accepted for processing"


class TaskStatusResponse(BaseModel):
    taskId: str
    type: str
    status: TaskStatus
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    errorType: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskStatusResponse":
        return cls(
            taskId=task.id,
            type=task.type,
            status=task.status,
            result=task.result,
            error=task.error,
            errorType=task.errorType,
            createdAt=task.createdAt,
            updatedAt=task.updatedAt,
        )


class ErrorEnvelope(BaseModel):
    ok: bool = False
    error: str
    message: str
