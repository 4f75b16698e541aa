"""
Error taxonomy shared by the API layer and the ingestion pipeline.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


class DocragError(Exception):
    """Base exception for docrag."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DocragError):
    """Bad or missing field, oversized file, disallowed type, invalid state."""

    status_code = 400


class NotFoundError(DocragError):
    """Unknown document or job."""

    status_code = 404


class ForbiddenError(DocragError):
    """Ownership mismatch."""

    status_code = 403


class UnsupportedFormat(DocragError):
    """No content loader is registered for the extension."""

    status_code = 400


class ContentExtractionError(DocragError):
    """A loader could not parse the bytes it was given."""

    status_code = 422


class TransientIngestionFailure(DocragError):
    """I/O, network or external service error; safe to retry."""

    status_code = 503


class InternalError(DocragError):
    """Unexpected failure."""

    status_code = 500


class IngestErrorKind(str, Enum):
    UNSUPPORTED_FORMAT = "unsupported_format"
    EXTRACTION_FAILED = "extraction_failed"
    TRANSIENT = "transient"
    INTERNAL = "internal"


@dataclass(frozen=True)
class IngestError:
    """A failed pipeline step, tagged with the kind of failure."""

    kind: IngestErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind == IngestErrorKind.TRANSIENT

    @classmethod
    def from_exception(cls, exc: BaseException, default: IngestErrorKind) -> "IngestError":
        if isinstance(exc, UnsupportedFormat):
            kind = IngestErrorKind.UNSUPPORTED_FORMAT
        elif isinstance(exc, ContentExtractionError):
            kind = IngestErrorKind.EXTRACTION_FAILED
        elif isinstance(exc, (TransientIngestionFailure, OSError, TimeoutError)):
            kind = IngestErrorKind.TRANSIENT
        else:
            kind = default
        return cls(kind=kind, message=str(exc) or type(exc).__name__)


T = TypeVar("T")


@dataclass(frozen=True)
class StepResult(Generic[T]):
    """Outcome of one pipeline step: either a value or an IngestError."""

    value: Optional[T] = None
    error: Optional[IngestError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "StepResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: IngestError) -> "StepResult[T]":
        return cls(error=error)
