"""Error taxonomy for the upload pipeline.

Every error raised by a pipeline component derives from
``UploadPipelineError`` so the fallback chain can catch one base class.
"""

from typing import Optional


class UploadPipelineError(Exception):
    """Base class for all upload pipeline failures."""


class AuthError(UploadPipelineError):
    """No valid session. Fatal, nothing is uploaded."""


class MetadataError(UploadPipelineError):
    """The source container could not be probed."""


class TranscodeError(UploadPipelineError):
    """Encoding one resolution failed."""

    def __init__(self, message: str, label: Optional[str] = None):
        super().__init__(message)
        self.label = label


class SegmentError(UploadPipelineError):
    """Segmenting one resolution failed."""

    def __init__(self, message: str, label: Optional[str] = None):
        super().__init__(message)
        self.label = label


class AllVariantsFailedError(UploadPipelineError):
    """Every resolution of the ladder failed to transcode or segment."""

    def __init__(self, failures: dict[str, str]):
        labels = ", ".join(sorted(failures)) or "none"
        super().__init__(f"All resolutions failed ({labels})")
        self.failures = failures


class StorageError(UploadPipelineError):
    """Object storage failure, classified by ``kind``."""

    kind = "unknown"

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class StorageNetworkError(StorageError):
    """Transient transport fault. Retried a bounded number of times."""

    kind = "network"


class StorageAccessDeniedError(StorageError):
    kind = "access_denied"


class StorageNotFoundError(StorageError):
    kind = "not_found"


class UploadError(UploadPipelineError):
    """An artifact could not be stored."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class PersistenceError(UploadPipelineError):
    """Writing the video record failed. Uploaded objects are left in place."""


class UploadCancelledError(UploadPipelineError):
    """The caller fired the cancellation signal."""
