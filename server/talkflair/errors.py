"""Error taxonomy shared by storage, providers, the poller and the HTTP layer."""
from __future__ import annotations

from typing import Any, Optional


class TalkflairError(RuntimeError):
    """Base error; carries the HTTP status and whether a retry may succeed."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class MissingInput(TalkflairError):
    """Raised when the image or the audio input is absent or empty."""

    status_code = 400


class InvalidInput(TalkflairError):
    """Raised for malformed input such as an unknown aspect ratio or a bad URL."""

    status_code = 400


class Unconfigured(TalkflairError):
    """Raised when a required credential or setting is missing."""

    status_code = 500


class StorageUnavailable(TalkflairError):
    """Raised when object storage cannot be reached or refuses our credentials."""

    status_code = 502
    retryable = True


class UploadRejected(TalkflairError):
    """Raised when a payload is refused, locally or by object storage (size/type)."""

    status_code = 400


class UploadFailed(TalkflairError):
    """Raised when one of the two uploads of a generation request failed.

    Status code and retryability mirror the underlying cause.
    """

    def __init__(self, message: str, *, cause: TalkflairError) -> None:
        super().__init__(message, details=cause.message)
        self.cause = cause
        self.status_code = cause.status_code
        self.retryable = cause.retryable


class SubmissionRejected(TalkflairError):
    """Raised when the generation provider declines a job."""

    status_code = 502


class StatusCheckFailed(TalkflairError):
    """Raised when a job status query fails (or fails too many times in a row)."""

    status_code = 502
    retryable = True


class GenerationFailed(TalkflairError):
    """Raised when the provider reports a terminal failure for the job."""

    status_code = 502


class GenerationTimedOut(TalkflairError):
    """Raised when a job never reached a terminal state within the poll budget."""

    status_code = 408
    retryable = True


class JobCancelled(TalkflairError):
    """Raised when the caller went away while the poller was still waiting."""

    status_code = 499
