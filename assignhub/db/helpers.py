# assignhub/db/helpers.py
"""
Database helper functions for common patterns.
Reduces boilerplate in repositories.
"""

from typing import Any

import psycopg

from assignhub.db.pool import db_pool
from assignhub.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """
    Failure in a database operation.

    `recoverable` is True when retrying later can succeed (connection lost,
    server unavailable) and False for errors a retry would repeat.
    """

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters

    Returns:
        Dict with row data or None if no results
    """
    try:
        async with db_pool.connection() as conn:
            cur = await conn.execute(query, params)
            return await cur.fetchone()

    except psycopg.OperationalError as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e
    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one", recoverable=False) from e
