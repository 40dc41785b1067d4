# model/task.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class TaskType(str, Enum):
    CREATE_REPO = "CREATE_REPO"
    PROCESS_ASSET = "PROCESS_ASSET"


class TaskStatus(str, Enum):
    pending = "pending"
    running = "running"
    success = "success"
    failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.success, TaskStatus.failed)


# Allowed forward moves; anything else is a programming error.
TRANSITIONS: Dict[TaskStatus, tuple] = {
    TaskStatus.pending: (TaskStatus.running,),
    TaskStatus.running: (TaskStatus.success, TaskStatus.failed),
    TaskStatus.success: (),
    TaskStatus.failed: (),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Task(BaseModel):
    id: str
    type: str
    status: TaskStatus = TaskStatus.pending
    payload: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    errorType: Optional[str] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)
    finishedAt: Optional[datetime] = None


class CreateRepoPayload(BaseModel):
    ownerId: str
    projectId: str
    projectName: str
    repoHash: str
    manifest: Dict[str, Any]


class ProcessAssetPayload(BaseModel):
    tempFilePath: str
    originalFilename: str
    projectId: str
    ownerId: str
    targetFolderPath: str = "."
    size: int
    mimeType: Optional[str] = None
    uploadedAt: datetime = Field(default_factory=utcnow)
