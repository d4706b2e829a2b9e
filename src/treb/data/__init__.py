"""Async database access, cached models and result sets.

SQL in, dicts out. Not an ORM: ``Model`` is a cached row with dirty
tracking, ``ResultSet`` a cached list of ids.

Basic usage::

    from treb.data import Database

    db = Database("sqlite:///app.db")
    rows = await db.fetch_all("SELECT * FROM users WHERE active = ?", 1)

Inside an app, ask the services for a pool instead::

    db = await self.services.db("read")

SQLite works out of the box; PostgreSQL needs ``asyncpg``::

    pip install treb[data-pg]
"""

from treb.data.cached import cached_row
from treb.data.database import Database
from treb.data.errors import (
    ConnectionError,
    DataError,
    DriverNotInstalledError,
    ModelError,
    QueryError,
)
from treb.data.model import Model
from treb.data.pools import DatabasePools
from treb.data.resultset import ResultSet

__all__ = [
    "ConnectionError",
    "DataError",
    "Database",
    "DatabasePools",
    "DriverNotInstalledError",
    "Model",
    "ModelError",
    "QueryError",
    "ResultSet",
    "cached_row",
]
