"""API error taxonomy.

Every error leaving the HTTP layer is rendered as ``{"error", "code"}``.
Directory misses are not exceptions inside the core; the HTTP layer turns
them into ``MailboxNotFoundError`` at the boundary.
"""

from enum import Enum
from typing import Dict, Optional

from fastapi import status


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ApiError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_content(self) -> Dict[str, object]:
        return {"error": self.message, "code": self.code.value}

    def headers(self) -> Optional[Dict[str, str]]:
        return None


class PrefixValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCode.VALIDATION_ERROR


class MailboxNotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    code = ErrorCode.NOT_FOUND

    def __init__(self, address: str):
        super().__init__("Email not found or expired")
        self.address = address


class RateLimitExceededError(ApiError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(self, retry_after: int):
        super().__init__("Too many requests, please try again later")
        self.retry_after = retry_after

    def to_content(self) -> Dict[str, object]:
        content = super().to_content()
        content["retryAfter"] = self.retry_after
        return content

    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}
