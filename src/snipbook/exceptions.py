"""Custom exceptions for snipbook.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Notebook errors (1xxx)
    NOTEBOOK_NOT_FOUND = 1001
    NOTEBOOK_NOT_EMPTY = 1002
    NOTEBOOK_NAME_REQUIRED = 1003

    # Snippet errors (2xxx)
    SNIPPET_NOT_FOUND = 2001
    SNIPPET_TITLE_REQUIRED = 2002

    # Tag errors (3xxx)
    TAG_NOT_FOUND = 3001
    TAG_INVALID = 3002

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003

    # Serialization errors (5xxx)
    DOCUMENT_MALFORMED = 5001
    IMPORT_MALFORMED = 5002

    # External tool errors (6xxx)
    EXTERNAL_TOOL_MISSING = 6001
    EXTERNAL_TOOL_FAILED = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_DIRECTION = 7002
    PATH_TRAVERSAL_DETECTED = 7003


class SnipbookError(Exception):
    """Base exception for all snipbook errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(SnipbookError):
    """Raised when a referenced notebook, snippet or tag does not exist."""

    def __init__(
        self,
        entity: str,
        entity_id: str,
        code: ErrorCode = ErrorCode.SNIPPET_NOT_FOUND,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"{entity.capitalize()} with ID '{entity_id}' not found",
            code=code,
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(SnipbookError):
    """Raised for empty required fields and invalid structural changes."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class ConflictError(SnipbookError):
    """Raised when an operation would leave dangling references."""

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOTEBOOK_NOT_EMPTY,
    ):
        details = {"id": entity_id} if entity_id else {}
        super().__init__(message, code=code, details=details)
        self.entity_id = entity_id


class StorageError(SnipbookError):
    """Raised for file read, write, and delete failures."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class SerializationError(SnipbookError):
    """Raised when a persisted or imported document cannot be parsed."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        code: ErrorCode = ErrorCode.DOCUMENT_MALFORMED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if source:
            details["source"] = source
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.source = source
        self.original_error = original_error


class ExternalToolError(SnipbookError):
    """Raised when the editor or clipboard command is missing or fails."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
        code: ErrorCode = ErrorCode.EXTERNAL_TOOL_FAILED,
    ):
        details: Dict[str, Any] = {}
        if command:
            details["command"] = command
        if returncode is not None:
            details["returncode"] = returncode
        if stderr:
            details["stderr"] = stderr[:200]

        super().__init__(message, code=code, details=details)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
