# model/upload.py
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class UploadMetadata(BaseModel):
    projectId: str
    targetFolderPath: str = "."
    originalFilename: str
    ownerId: str
    mimeType: Optional[str] = None


class UploadSession(BaseModel):
    id: str
    byteOffset: int = 0
    totalSize: int
    metadata: UploadMetadata
    createdAt: datetime

    @property
    def complete(self) -> bool:
        return self.byteOffset >= self.totalSize


class UploadReceipt(BaseModel):
    """Outcome of a create/append call as seen by the HTTP boundary."""

    session: UploadSession
    taskId: Optional[str] = None
    expiresAt: Optional[datetime] = None
