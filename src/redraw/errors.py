"""Exception classes for the redraw service"""

from typing import Any, Dict, Optional


class RedrawError(Exception):
    """Base exception class for redraw errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to standard error format"""
        return {"code": self.code, "message": str(self), "details": self.details}


class ConfigurationError(RedrawError):
    """Raised when external-service credentials are missing or invalid"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class ValidationError(RedrawError):
    """Raised when task-creation input is malformed"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class GenerationError(RedrawError):
    """Raised when the design service fails or returns an unusable payload"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="GENERATION_ERROR",
            details={"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body


class AnalysisError(RedrawError):
    """Raised when content analysis fails. Never reaches the user."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="ANALYSIS_ERROR", details=details)


class StoreError(RedrawError):
    """Raised when the task store cannot complete an operation"""

    def __init__(
        self,
        message: str,
        code: str = "STORE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, details=details)


class TaskNotFoundError(StoreError):
    """Raised when writing to a task that does not exist"""

    def __init__(self, task_id: str):
        super().__init__(
            f"Task {task_id} not found",
            code="TASK_NOT_FOUND",
            details={"task_id": task_id},
        )
        self.task_id = task_id


class TaskBusyError(RedrawError):
    """Raised when a task already has an active run"""

    def __init__(self, task_id: str):
        super().__init__(
            f"Task {task_id} is already queued or running",
            code="TASK_BUSY",
            details={"task_id": task_id},
        )
        self.task_id = task_id
