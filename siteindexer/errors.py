"""Error types shared across the crawl-to-index pipeline.

Every error raised by this package derives from :class:`IndexerError` and
carries an :class:`ErrorCode` plus an optional ``details`` mapping, so that
the CLI and the telemetry sink can report failures in a uniform shape.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    CONFIG_INVALID = "CONFIG_INVALID"
    SENDER_INIT_FAILED = "SENDER_INIT_FAILED"
    SENDER_BATCH_FAILED = "SENDER_BATCH_FAILED"
    SENDER_INVALID_STATE = "SENDER_INVALID_STATE"
    INDEX_REQUEST_FAILED = "INDEX_REQUEST_FAILED"
    INDEX_TASK_FAILED = "INDEX_TASK_FAILED"
    INDEX_TASK_TIMEOUT = "INDEX_TASK_TIMEOUT"
    AI_REQUEST_FAILED = "AI_REQUEST_FAILED"
    CRAWL_FAILED = "CRAWL_FAILED"


class IndexerError(Exception):
    """Base class for all siteindexer errors."""

    code: ErrorCode = ErrorCode.CRAWL_FAILED

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.details: Dict[str, Any] = dict(details or {})
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigError(IndexerError):
    """Raised when a crawl configuration fails validation."""

    code = ErrorCode.CONFIG_INVALID


class SenderInitError(IndexerError):
    """Raised when the staging index cannot be prepared."""

    code = ErrorCode.SENDER_INIT_FAILED


class SenderStateError(IndexerError):
    """Raised when a sender method is called in the wrong lifecycle state."""

    code = ErrorCode.SENDER_INVALID_STATE


class BatchSendError(IndexerError):
    """A batch could not be handed to the index after every retry."""

    code = ErrorCode.SENDER_BATCH_FAILED

    def __init__(self, message: str, queue_size: int, last_error: Optional[BaseException] = None):
        self.queue_size = queue_size
        self.last_error = last_error
        super().__init__(
            message,
            details={
                "queue_size": queue_size,
                "last_error": str(last_error) if last_error is not None else None,
            },
        )


class IndexClientError(IndexerError):
    """An HTTP call to the search index failed."""

    code = ErrorCode.INDEX_REQUEST_FAILED

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if error_code:
            details["error_code"] = error_code
        super().__init__(message, details=details)


class IndexTaskFailedError(IndexClientError):
    """An asynchronous index task finished as failed or canceled."""

    code = ErrorCode.INDEX_TASK_FAILED


class IndexTaskTimeoutError(IndexClientError):
    """An asynchronous index task did not finish before the deadline."""

    code = ErrorCode.INDEX_TASK_TIMEOUT


class AIRequestError(IndexerError):
    """A chat-completion request failed or returned an unusable body."""

    code = ErrorCode.AI_REQUEST_FAILED
