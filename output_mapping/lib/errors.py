"""Structured exception hierarchy for output mapping.

Every failure that leaves the writer is one of the classes below, with
rich context for debugging and the original status code where one exists.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
    "OutputMappingError",
    "InvalidOutputError",
    "OutputOperationError",
    "StorageApiError",
]


class OutputMappingError(Exception):
    """Base exception for all output mapping errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        code: int = 0,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class InvalidOutputError(OutputMappingError):
    """User-facing error about the produced output or its mapping.

    Raised for configuration errors, reconciliation errors, branch
    ownership errors and wrapped backend failures.
    """

    def __init__(
        self,
        message: str,
        code: int = 0,
        *,
        errors: Optional[List["OutputMappingError"]] = None,
        **kwargs: Any,
    ) -> None:
        self.errors = errors or []
        super().__init__(message, code, **kwargs)


class OutputOperationError(OutputMappingError):
    """Precondition failure unrelated to any single source file."""


class StorageApiError(OutputMappingError):
    """Error returned by the storage backend or its transport.

    ``code`` holds the HTTP status code (0 for transport-level failures).
    """

    def __init__(
        self,
        message: str,
        code: int = 0,
        *,
        error_code: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.error_code = error_code
        super().__init__(message, code, **kwargs)

    @property
    def is_not_found(self) -> bool:
        return self.code == 404
