from __future__ import annotations


class GenerationError(RuntimeError):
    """Base error for generation orchestration failures."""


class CreationFailedError(GenerationError):
    """Raised when a provider rejects a submission or returns no task id."""


class TransientStatusError(GenerationError):
    """Raised when a status check fails for network or parsing reasons."""


class CredentialsRejectedError(TransientStatusError):
    """Raised when a status check cannot succeed with the key in use."""


class StorageError(GenerationError):
    """Raised when durable storage interactions fail."""


class MissingCredentialsError(GenerationError):
    """Raised when neither a per-call nor a default API key is available."""


class UnknownProviderError(GenerationError):
    """Raised when no provider can be resolved for a task."""


class ResultFetchError(GenerationError):
    """Raised when provider-hosted result bytes cannot be downloaded."""
