# service/bootstrap.py
import os
from dataclasses import dataclass
from config.settings import settings
from core.task_queue import TaskQueue
from model.task import CreateRepoPayload, ProcessAssetPayload, TaskType
from service.asset_ingestion_service import AssetIngestionService
from service.repository_provisioner import RepositoryProvisioner
from service.upload_service import UploadService


@dataclass
class Services:
    tasks: TaskQueue
    uploads: UploadService
    provisioner: RepositoryProvisioner
    ingestion: AssetIngestionService


def ensure_storage_dirs() -> None:
    for d in (
        settings.REPOS_DIR,
        settings.WORKTREES_DIR,
        settings.TUS_DIR,
        settings.STAGING_DIR,
        settings.WORK_DIR,
    ):
        os.makedirs(d, exist_ok=True)


def build_services() -> Services:
    """Wire the queue, its handler registry and the services that enqueue into it."""
    tasks = TaskQueue(
        workers=settings.TASK_WORKERS,
        retention_seconds=settings.TASK_RETENTION_SECONDS,
        max_retained=settings.TASK_MAX_RETAINED,
    )
    provisioner = RepositoryProvisioner(tasks)
    ingestion = AssetIngestionService()
    tasks.register(TaskType.CREATE_REPO, CreateRepoPayload, provisioner.provision)
    tasks.register(TaskType.PROCESS_ASSET, ProcessAssetPayload, ingestion.ingest)
    uploads = UploadService(tasks)
    return Services(tasks=tasks, uploads=uploads, provisioner=provisioner, ingestion=ingestion)
