"""Error taxonomy shared by the sync pipeline and the API."""

from __future__ import annotations


class SupplyStackError(Exception):
    pass


class ExtractionError(SupplyStackError):
    """The extraction service returned an error or a malformed payload."""

    def __init__(self, message: str, *, category: str | None = None) -> None:
        super().__init__(message)
        self.category = category


class StorageError(SupplyStackError):
    """A read or write against the datastore failed."""


class ValidationError(SupplyStackError):
    """Malformed caller input."""


class NotFoundError(SupplyStackError):
    pass


class InvalidStateError(SupplyStackError):
    """The requested transition is not allowed from the current status."""

    def __init__(self, message: str, *, status: str | None = None) -> None:
        super().__init__(message)
        self.status = status
