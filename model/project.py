# model/project.py
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class ProjectManifest(BaseModel):
    ownerId: str
    projectId: str
    projectName: str
    createdAt: datetime
    schemaVersion: int


class ProjectCreated(BaseModel):
    projectId: str
    projectName: str
    repoHash: str
    taskId: str


@dataclass
class Repository:
    repo_hash: str
    path: str
    hooks_installed: bool


@dataclass
class StagedAsset:
    temp_path: str
    target_path: Optional[str]  # set once the destination is resolved
    size: int
    mime_type: str
