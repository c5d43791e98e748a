from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    CONFIG = "config"
    DEPENDENCY = "dependency"
    RUNTIME = "runtime"


DEFAULT_EXIT_CODES: dict[ErrorCategory, int] = {
    ErrorCategory.RUNTIME: 1,
    ErrorCategory.CONFIG: 2,
    ErrorCategory.DEPENDENCY: 3,
}


@dataclass
class UnlustigError(Exception):
    """Base exception for unlustig with standardized categories."""

    message: str
    category: ErrorCategory = ErrorCategory.RUNTIME
    exit_code: int | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.exit_code is None:
            self.exit_code = DEFAULT_EXIT_CODES.get(self.category, 1)

    def label(self) -> str:
        return {
            ErrorCategory.CONFIG: "Configuration error",
            ErrorCategory.DEPENDENCY: "Dependency error",
            ErrorCategory.RUNTIME: "Runtime error",
        }.get(self.category, "Error")


class DependencyMissingError(UnlustigError):
    """Raised when a required external dependency is missing."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(
            message,
            category=ErrorCategory.DEPENDENCY,
            exit_code=exit_code,
        )


class ConfigurationError(UnlustigError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(
            message,
            category=ErrorCategory.CONFIG,
            exit_code=exit_code,
        )


class ProcessTimeoutError(UnlustigError):
    """Raised when an external process exceeds its wall-clock budget."""

    def __init__(self, message: str, *, timeout: float | None = None) -> None:
        super().__init__(message)
        self.timeout = timeout


# ----------------------------------------------------------------------
# Stage errors
# ----------------------------------------------------------------------
class DecodeErrorKind(str, Enum):
    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT = "corrupt"
    MISSING_DEPENDENCY = "missing_dependency"
    NOT_FOUND = "not_found"


class LayoutErrorKind(str, Enum):
    TEXT_TOO_LARGE = "text_too_large"
    INVALID_STYLE = "invalid_style"
    EMPTY_CAPTION = "empty_caption"


class EncodeErrorKind(str, Enum):
    UNSUPPORTED_PIXEL_FORMAT = "unsupported_pixel_format"
    IO_FAILURE = "io_failure"
    SUBPROCESS_FAILURE = "subprocess_failure"
    MISSING_DEPENDENCY = "missing_dependency"


class StageError(UnlustigError):
    """An error raised by one pipeline stage; `stage` names it."""

    stage = "pipeline"

    def __init__(self, kind: Enum, message: str, *, category: ErrorCategory) -> None:
        super().__init__(message, category=category)
        self.kind = kind

    def label(self) -> str:
        return f"{self.stage.capitalize()} error"


class DecodeError(StageError):
    stage = "decode"

    def __init__(self, kind: DecodeErrorKind, message: str) -> None:
        category = (
            ErrorCategory.DEPENDENCY
            if kind is DecodeErrorKind.MISSING_DEPENDENCY
            else ErrorCategory.RUNTIME
        )
        super().__init__(kind, message, category=category)


class LayoutError(StageError):
    stage = "layout"

    def __init__(self, kind: LayoutErrorKind, message: str) -> None:
        category = (
            ErrorCategory.CONFIG
            if kind is LayoutErrorKind.INVALID_STYLE
            else ErrorCategory.RUNTIME
        )
        super().__init__(kind, message, category=category)


class EncodeError(StageError):
    stage = "encode"

    def __init__(self, kind: EncodeErrorKind, message: str) -> None:
        category = (
            ErrorCategory.DEPENDENCY
            if kind is EncodeErrorKind.MISSING_DEPENDENCY
            else ErrorCategory.RUNTIME
        )
        super().__init__(kind, message, category=category)
