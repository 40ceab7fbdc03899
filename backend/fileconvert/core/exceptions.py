# FILE: backend/fileconvert/core/exceptions.py
# CONVERSION ERROR TAXONOMY
# 1. Every failure carries an HTTP status and a retry flag.
# 2. The retry wrapper only looks at 'retryable'; the API handler only looks at 'status_code'.

from typing import Iterable


class ConversionError(Exception):
    """Base class for every failure raised by the conversion engine."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


# --- Request errors (400) ---

class UnsupportedFileType(ConversionError):
    status_code = 400

    def __init__(self, extension: str, allowed: Iterable[str]):
        self.extension = extension
        self.allowed = sorted(allowed)
        shown = f".{extension}" if extension else "(none)"
        super().__init__(f"Unsupported file type: {shown}. Allowed types: {', '.join(self.allowed)}")


class UnsupportedConversionType(ConversionError):
    status_code = 400


# --- Execution errors (500) ---

class ExternalConversionError(ConversionError):
    """The external backend failed, or reported success without a usable file."""

    retryable = True


class AuthenticationError(ExternalConversionError):
    retryable = False

    def __init__(self, message: str = "invalid API key"):
        super().__init__(message)


class RateLimitError(ExternalConversionError):
    retryable = True

    def __init__(self, message: str = "rate limited by conversion provider"):
        super().__init__(message)


class DocumentBuildError(ConversionError):
    pass


class OCRError(ConversionError):
    pass


class ConversionFailedError(ConversionError):
    """A local strategy could not produce output (unreadable input, no text found)."""


class EmptyResultError(ConversionFailedError):
    def __init__(self, message: str = "Conversion produced an empty result."):
        super().__init__(message)
