# config/settings.py
import os
import sys
from pathlib import Path
from typing import List
from dotenv import load_dotenv
from pydantic import ValidationError, Field
from pydantic_settings import BaseSettings
from util.enums import Environment
import logging


if os.getenv("APP_ENV", Environment.DEV) == Environment.DEV:
    load_dotenv()

_log = logging.getLogger("config.settings")

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # App
    APP_ENV: str = Field(..., validation_alias="APP_ENV")
    REDIS_URL: str = Field(..., validation_alias="REDIS_URL")

    # CORS & Limits
    ALLOWED_ORIGIN: str = Field(..., validation_alias="ALLOWED_ORIGIN")
    RATE_LIMIT_ENABLED: bool = Field(default=True, validation_alias="RATE_LIMIT_ENABLED")
    RATE_LIMIT_TIMES: int = Field(..., validation_alias="RATE_LIMIT_TIMES")
    RATE_LIMIT_SECONDS: int = Field(..., validation_alias="RATE_LIMIT_SECONDS")
    MAX_FILE_MB: int = Field(..., validation_alias="MAX_FILE_MB")
    PROJECT_QUOTA_MB: int = Field(default=1024, validation_alias="PROJECT_QUOTA_MB")
    TRUST_PROXY: bool = Field(..., validation_alias="TRUST_PROXY")
    ALLOWED_MIME_TYPES: List[str] = Field(
        default=[
            "application/pdf",
            "text/plain",
            "text/markdown",
            "image/jpeg",
            "image/png",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        ],
        validation_alias="ALLOWED_MIME_TYPES",
    )

    # Identity is verified upstream; we only read the trusted header.
    IDENTITY_HEADER: str = Field(default="X-User-Id", validation_alias="IDENTITY_HEADER")

    # Storage layout
    REPOS_DIR: str = Field(
        default=str(BASE_DIR / "data" / "repos"), validation_alias="REPOS_DIR"
    )
    WORKTREES_DIR: str = Field(
        default=str(BASE_DIR / "data" / "worktrees"), validation_alias="WORKTREES_DIR"
    )
    TUS_DIR: str = Field(
        default=str(BASE_DIR / "data" / "uploads" / "tus"), validation_alias="TUS_DIR"
    )
    STAGING_DIR: str = Field(
        default=str(BASE_DIR / "data" / "uploads" / "completed"),
        validation_alias="STAGING_DIR",
    )
    WORK_DIR: str = Field(
        default=str(BASE_DIR / "data" / "tmp"), validation_alias="WORK_DIR"
    )

    # Git
    GIT_BINARY: str = Field(default="git", validation_alias="GIT_BINARY")
    GIT_TIMEOUT_SECONDS: int = Field(default=120, validation_alias="GIT_TIMEOUT_SECONDS")
    GIT_AUTOMATION_NAME: str = Field(
        default="docvault automation", validation_alias="GIT_AUTOMATION_NAME"
    )
    GIT_AUTOMATION_EMAIL: str = Field(
        default="automation@docvault.local", validation_alias="GIT_AUTOMATION_EMAIL"
    )
    GIT_USER_EMAIL_DOMAIN: str = Field(
        default="users.docvault.local", validation_alias="GIT_USER_EMAIL_DOMAIN"
    )
    HOOK_SCRIPT_PATH: str = Field(
        default=str(BASE_DIR / "hooks" / "pre-receive"),
        validation_alias="HOOK_SCRIPT_PATH",
    )
    MANIFEST_SCHEMA_VERSION: int = 1

    # Task queue
    TASK_WORKERS: int = Field(default=4, validation_alias="TASK_WORKERS")
    TASK_RETENTION_SECONDS: int = Field(
        default=6 * 60 * 60, validation_alias="TASK_RETENTION_SECONDS"
    )
    TASK_MAX_RETAINED: int = Field(default=10_000, validation_alias="TASK_MAX_RETAINED")

    # Resumable uploads
    UPLOAD_IDLE_TTL_SECONDS: int = Field(
        default=24 * 60 * 60, validation_alias="UPLOAD_IDLE_TTL_SECONDS"
    )
    UPLOAD_SWEEP_INTERVAL_SECONDS: int = Field(
        default=10 * 60, validation_alias="UPLOAD_SWEEP_INTERVAL_SECONDS"
    )
    UPLOAD_COPY_CHUNK_BYTES: int = 1024 * 1024

    # Logging knobs
    LOGGER_NAME: str = "docvault"
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    LOG_TO_FILE: bool = Field(default=False, validation_alias="LOG_TO_FILE")
    LOG_DIR: str = Field(default="logs", validation_alias="LOG_DIR")
    LOG_FILE_NAME: str = Field(default="app.log", validation_alias="LOG_FILE_NAME")
    LOG_MAX_BYTES: int = Field(
        default=50 * 1024 * 1024, validation_alias="LOG_MAX_BYTES"
    )
    LOG_BACKUP_COUNT: int = Field(default=5, validation_alias="LOG_BACKUP_COUNT")

    @property
    def max_file_bytes(self) -> int:
        return self.MAX_FILE_MB * 1024 * 1024

    @property
    def project_quota_bytes(self) -> int:
        return self.PROJECT_QUOTA_MB * 1024 * 1024


try:
    settings = Settings()
except ValidationError as e:
    print("❌ Missing/invalid environment variables:", file=sys.stderr)
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", []))
        msg = err.get("msg", "")
        print(f" - {loc}: {msg}", file=sys.stderr)
    sys.exit(1)
except Exception as e:
    print(f"❌ Settings initialization failed: {e}", file=sys.stderr)
    sys.exit(1)
