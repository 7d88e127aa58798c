"""Exceptions raised by the TDF codec, reconciler and job pipeline."""

from typing import List, Optional


# ========== Base Application Exception ==========


class TDFBridgeError(Exception):
    """Base exception for all TDF bridge errors."""

    pass


# ========== Codec Exceptions ==========


class TDFStructureError(TDFBridgeError):
    """Raised when a document is malformed or its header is unusable.

    Carries the full list of violated rules so callers can report them at once.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid TDF structure: " + "; ".join(self.errors))


class TDFConsistencyError(TDFBridgeError):
    """Raised when encoder output fails its own validation.

    This is an internal fault, never a problem with user input.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Generated TDF failed self-validation: " + "; ".join(self.errors))


class TDFConfigurationError(TDFBridgeError):
    """Raised for mapping gaps such as an unknown tournament type code."""

    pass


class IdentifierExhaustedError(TDFBridgeError):
    """Raised when generated identifiers keep colliding on write."""

    pass


# ========== Storage Exceptions ==========


class BlobNotFoundError(TDFBridgeError):
    """Raised when a blob key does not exist in the store."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Blob not found: {path}")


# ========== Job Exceptions ==========


class JobCancelled(TDFBridgeError):
    """Raised inside an executor when its job's cancellation flag is observed."""

    def __init__(self, job_id: str, message: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message or f"Job {job_id} was cancelled")
