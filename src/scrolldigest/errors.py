from __future__ import annotations


class ScrollDigestError(Exception):
    """Base class for everything the pipeline raises on purpose."""


class ConfigError(ScrollDigestError):
    pass


class CancelledError(ScrollDigestError):
    pass


# Authentication

class AuthError(ScrollDigestError):
    """Login could not be completed; the user has to log in again."""


class LoginTimeoutError(AuthError):
    pass


class BrowserError(AuthError):
    pass


# Session store

class SessionError(ScrollDigestError):
    pass


class NotFoundError(SessionError):
    pass


class CorruptError(SessionError):
    pass


class ValidationError(SessionError):
    """Stored credentials exist but are expired or incomplete."""


class StorageError(ScrollDigestError):
    pass


# Extraction

class ExtractionError(ScrollDigestError):
    pass


class NavigationError(ExtractionError):
    pass


# Analysis

class AnalysisError(ScrollDigestError):
    def __init__(self, message: str, batch_index: int | None = None):
        super().__init__(message)
        self.batch_index = batch_index


class StageError(ScrollDigestError):
    """Wraps a failure with the pipeline stage it happened in."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause
