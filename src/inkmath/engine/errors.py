from __future__ import annotations


class RecognitionError(Exception):
    """Base class for recognition backend failures. Never fatal to drawing."""

    def __init__(self, message: str, *, backend: str | None = None) -> None:
        super().__init__(message)
        self.backend = backend


class ConfigurationMissing(RecognitionError):
    """Backend has no credentials configured; it is skipped for the session."""


class AuthorizationFailure(RecognitionError):
    """Backend rejected our credentials (HTTP 401); sticky for the session."""


class TransientServiceError(RecognitionError):
    """Non-2xx other than 401, network failure or unparseable body."""

    def __init__(self, message: str, *, backend: str | None = None, status: int | None = None) -> None:
        super().__init__(message, backend=backend)
        self.status = status
