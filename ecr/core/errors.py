"""
eCR exception hierarchy.

Provides a base exception class with user-facing messages and debug context,
plus specialized subclasses for the worker IPC layer and the ML layer.
"""

from typing import Any, Dict, Optional


class ECRError(Exception):
    """Base exception for eCR engine errors.

    Attributes:
        user_message: Safe, user-facing error message.
        context: Dictionary of debug information.
    """

    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.user_message = user_message or message
        self.context = context or {}


class ConfigError(ECRError):
    """Configuration load/validation errors."""

    pass


class WorkerError(ECRError):
    """Worker process errors (startup failure, communication errors, etc.)."""

    pass


class WorkerNotReadyError(WorkerError):
    """A command was issued before the worker reported ready."""

    pass


class WorkerCrashedError(WorkerError):
    """The worker exited while the request was still pending."""

    pass


class WorkerStoppedError(WorkerError):
    """The request was cancelled because the supervisor was stopped."""

    pass


class WorkerCommandError(WorkerError):
    """The worker answered the request with status "error"."""

    pass


class ModelError(ECRError):
    """Residual model errors."""

    pass


class ModelUnavailableError(ModelError):
    """Model artifact or metadata could not be loaded."""

    pass


class ModelInferenceError(ModelError):
    """Model loaded but inference failed or returned an unusable value."""

    pass
