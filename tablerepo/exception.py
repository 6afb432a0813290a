"""Exceptions raised by tablerepo."""

from typing import Optional


class TableRepositoryException(Exception):
    """Base class for every error raised by this package."""


class ConfigurationException(TableRepositoryException, ValueError):
    """Invalid constructor or call arguments; raised before any network call."""


class ConflictException(TableRepositoryException):
    """The identity already exists or the version tag no longer matches."""

    def __init__(self, message: str, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class RecordNotFoundException(TableRepositoryException):
    """A write targeted a record that does not exist."""


class BatchItemException(TableRepositoryException):
    """A batch was rejected for a reason other than a conflict."""

    def __init__(self, message: str, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class FilterException(TableRepositoryException):
    """The backend cannot express the requested filter."""


class RecordException(TableRepositoryException):
    """The record is not usable for the requested operation."""
