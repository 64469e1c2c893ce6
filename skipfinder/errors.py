from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skipfinder.models import UnitFailure


class ErrorKind(str, Enum):
    """Stable error classification exposed at the library boundary."""

    INVALID_UTF8_STRING = "invalid_utf8_string"
    NULL_ARGUMENT = "null_argument"
    INVALID_ARGUMENT = "invalid_argument"
    FRAME_HASH_DATA_NOT_FOUND = "frame_hash_data_not_found"
    FRAME_HASH_DATA_INVALID_VERSION = "frame_hash_data_invalid_version"
    INVALID_FRAME_HASH_DATA = "invalid_frame_hash_data"
    COMPARATOR_MINIMUM_PATHS = "comparator_minimum_paths"
    ANALYZER_INVALID_HASH_PERIOD = "analyzer_invalid_hash_period"
    ANALYZER_INVALID_HASH_DURATION = "analyzer_invalid_hash_duration"
    IO_ERROR = "io_error"
    UNKNOWN = "unknown"


_DESCRIPTIONS: dict[ErrorKind, str] = {
    ErrorKind.INVALID_UTF8_STRING: "Input path is not valid UTF-8",
    ErrorKind.NULL_ARGUMENT: "Input argument is missing",
    ErrorKind.INVALID_ARGUMENT: "One or more input arguments were invalid",
    ErrorKind.FRAME_HASH_DATA_NOT_FOUND: "Frame hash data not found on disk",
    ErrorKind.FRAME_HASH_DATA_INVALID_VERSION: "Frame hash data has an invalid version",
    ErrorKind.INVALID_FRAME_HASH_DATA: "Invalid frame hash data read from disk",
    ErrorKind.COMPARATOR_MINIMUM_PATHS: "Comparator requires at least 2 video paths",
    ErrorKind.ANALYZER_INVALID_HASH_PERIOD: "Analyzer hash period must be greater than 0",
    ErrorKind.ANALYZER_INVALID_HASH_DURATION: (
        "Analyzer hash duration must cover at least one analysis frame and fit inside the video"
    ),
    ErrorKind.IO_ERROR: "I/O error",
    ErrorKind.UNKNOWN: "Unknown error occurred; please re-run with debug logging enabled",
}


def describe(kind: ErrorKind) -> str:
    """Return the human-readable description for an error kind."""

    return _DESCRIPTIONS[kind]


class SkipFinderError(Exception):
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or describe(self.kind))

    @property
    def description(self) -> str:
        return describe(self.kind)


class InvalidPathEncodingError(SkipFinderError, ValueError):
    kind = ErrorKind.INVALID_UTF8_STRING


class NullArgumentError(SkipFinderError, LookupError):
    kind = ErrorKind.NULL_ARGUMENT


class InvalidArgumentError(SkipFinderError, ValueError):
    kind = ErrorKind.INVALID_ARGUMENT


class ComparatorMinimumPathsError(InvalidArgumentError):
    kind = ErrorKind.COMPARATOR_MINIMUM_PATHS


class FrameHashDataNotFoundError(SkipFinderError, LookupError):
    kind = ErrorKind.FRAME_HASH_DATA_NOT_FOUND


class FrameHashDataInvalidVersionError(SkipFinderError, ValueError):
    kind = ErrorKind.FRAME_HASH_DATA_INVALID_VERSION


class InvalidFrameHashDataError(SkipFinderError, ValueError):
    kind = ErrorKind.INVALID_FRAME_HASH_DATA


class InvalidHashPeriodError(SkipFinderError, ValueError):
    kind = ErrorKind.ANALYZER_INVALID_HASH_PERIOD


class InvalidHashDurationError(SkipFinderError, ValueError):
    kind = ErrorKind.ANALYZER_INVALID_HASH_DURATION


class MediaIOError(SkipFinderError, RuntimeError):
    kind = ErrorKind.IO_ERROR


class UnknownError(SkipFinderError, RuntimeError):
    kind = ErrorKind.UNKNOWN


class BatchFailedError(SkipFinderError, RuntimeError):
    """Raised after a fan-out run when at least one unit failed."""

    def __init__(self, failures: list[UnitFailure]) -> None:
        self.failures = list(failures)
        details = "; ".join(f"{failure.unit}: {failure.error}" for failure in self.failures)
        super().__init__(f"{len(self.failures)} unit(s) failed: {details}")
        self.kind = self.failures[0].error.kind if self.failures else ErrorKind.UNKNOWN


def classify(exc: BaseException) -> ErrorKind:
    """Map any exception onto the stable error classification."""

    if isinstance(exc, SkipFinderError):
        return exc.kind
    if isinstance(exc, UnicodeError):
        return ErrorKind.INVALID_UTF8_STRING
    if isinstance(exc, OSError):
        return ErrorKind.IO_ERROR
    return ErrorKind.UNKNOWN


def wrap_unit_error(exc: Exception) -> SkipFinderError:
    """Convert an unexpected exception raised inside a work unit into a classified error."""

    if isinstance(exc, SkipFinderError):
        return exc
    kind = classify(exc)
    if kind is ErrorKind.IO_ERROR:
        return MediaIOError(str(exc))
    if kind is ErrorKind.INVALID_UTF8_STRING:
        return InvalidPathEncodingError(str(exc))
    return UnknownError(f"{type(exc).__name__}: {exc}")
