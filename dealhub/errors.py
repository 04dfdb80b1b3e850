"""Error taxonomy shared by the stores, ingestion and the API."""

from __future__ import annotations


class DealHubError(RuntimeError):
    """Base class for every error raised by the stores."""


class ValidationError(DealHubError):
    pass


class NotFoundError(DealHubError):
    pass


class ConflictError(DealHubError):
    pass


class StoreUnavailableError(DealHubError):
    pass
