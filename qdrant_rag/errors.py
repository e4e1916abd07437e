"""
Error taxonomy for the retrieval pipeline.

Every error carries a stable ``kind`` string so the protocol adapter can
render a caller-facing error without inspecting exception classes.
Transient network failures never surface as these directly; they are
retried inside RateLimitedCaller and only the terminal outcome is raised.
"""

from __future__ import annotations

from typing import Any


class RetrievalError(Exception):
    """Base class for all pipeline errors."""

    kind = "retrieval_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class InvalidInputError(RetrievalError):
    """Malformed or empty caller input. Never retried."""

    kind = "invalid_input"


class ProviderUnavailableError(RetrievalError):
    """An embedding backend kept failing after all retries."""

    kind = "provider_unavailable"


class ProviderRequestError(RetrievalError):
    """An embedding backend rejected the request or returned garbage."""

    kind = "provider_request"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(RetrievalError):
    """Fatal at startup or first use."""

    kind = "configuration"


class DimensionMismatchError(ConfigurationError):
    kind = "dimension_mismatch"

    def __init__(self, expected: int, actual: int, context: str = "embedding") -> None:
        super().__init__(f"{context} dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class UnknownProviderError(ConfigurationError):
    kind = "unknown_provider"


class MissingCredentialError(ConfigurationError):
    kind = "missing_credential"


class ModelNotFoundError(ConfigurationError):
    """The local runtime does not have the requested model pulled."""

    kind = "model_not_found"


class IdentifierCollisionError(RetrievalError):
    """Two distinct caller ids normalized to the same store key."""

    kind = "identifier_collision"

    def __init__(self, key: str, first_id: str, second_id: str) -> None:
        super().__init__(f"ids {first_id!r} and {second_id!r} both normalize to store key {key}")
        self.key = key
        self.first_id = first_id
        self.second_id = second_id


class StoreUnavailableError(RetrievalError):
    """The vector store kept failing after all retries."""

    kind = "store_unavailable"


class StoreRequestError(RetrievalError):
    """The vector store refused a request for a reason other than caller input."""

    kind = "store_request"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OperationTimeoutError(RetrievalError):
    """A search or write exceeded its deadline; in-flight branches were cancelled."""

    kind = "timeout"
