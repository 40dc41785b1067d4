# util/errors.py
from typing import Dict, Optional
from fastapi import HTTPException, status


class AppError(HTTPException):
    # Flow: raise AppError to short-circuit with a typed status & message.
    def __init__(
        self,
        message: str,
        http_status: int = status.HTTP_400_BAD_REQUEST,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(status_code=http_status, detail=message, headers=headers)


class IngestError(Exception):
    """
    Base of the ingestion error taxonomy.

    Carries a machine-readable `code` and the HTTP status the boundary renders it with.
    Task workers record `type(exc).__name__` and `str(exc)` on the failed task.
    """

    code: str = "ingest_error"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self, message: str, *, code: str | None = None, http_status: int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status


class ValidationError(IngestError):
    # Bad shape, oversized, disallowed type. Nothing was mutated.
    code = "validation_failed"
    http_status = status.HTTP_400_BAD_REQUEST


class AuthorizationError(IngestError):
    # Permission or quota denied. Nothing was mutated.
    code = "forbidden"
    http_status = status.HTTP_403_FORBIDDEN


class TransferError(IngestError):
    # Offset mismatch, vanished or truncated upload.
    code = "transfer_failed"
    http_status = status.HTTP_409_CONFLICT


class RepositoryError(IngestError):
    # A git invocation failed.
    code = "repository_failed"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class StorageIOError(IngestError):
    # Filesystem move/permission failure.
    code = "storage_failed"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
