# util/enums.py
from enum import Enum
from typing import NamedTuple
from fastapi import status


class Color(str, Enum):
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    BOLD = "\033[1m"

    def __str__(self):
        return self.value


class Environment(str, Enum):
    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class ErrorInfo(NamedTuple):
    message: str
    http_status: int


class ErrorMessage(Enum):
    MISSING_IDENTITY = ErrorInfo("Missing caller identity", status.HTTP_401_UNAUTHORIZED)
    UNSUPPORTED_TUS_VERSION = ErrorInfo(
        "Unsupported Tus-Resumable version", status.HTTP_412_PRECONDITION_FAILED
    )
    INVALID_UPLOAD_LENGTH = ErrorInfo(
        "Upload-Length must be a non-negative integer", status.HTTP_400_BAD_REQUEST
    )
    INVALID_UPLOAD_OFFSET = ErrorInfo(
        "Upload-Offset must be a non-negative integer", status.HTTP_400_BAD_REQUEST
    )
    INVALID_CONTENT_TYPE = ErrorInfo(
        "Content-Type must be application/offset+octet-stream",
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    )
    TASK_NOT_FOUND = ErrorInfo("Task not found", status.HTTP_404_NOT_FOUND)
