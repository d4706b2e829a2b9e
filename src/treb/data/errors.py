"""Data layer error hierarchy."""

from treb.errors import TrebError


class DataError(TrebError):
    """Base for all treb.data errors."""


class DriverNotInstalledError(DataError):
    """The driver for a database URL scheme is not installed."""


class ConnectionError(DataError):  # noqa: A001
    """No server in a pool accepted a connection."""


class QueryError(DataError):
    """A SQL statement failed. The message carries the driver error and the SQL."""


class ModelError(DataError):
    """A model row could not be loaded or stored."""
