"""Custom exception hierarchy for the context resolution engine."""

from errors.exceptions import BackendClientError, CircuitOpenError, CollectionSearchError

__all__ = ["BackendClientError", "CircuitOpenError", "CollectionSearchError"]
