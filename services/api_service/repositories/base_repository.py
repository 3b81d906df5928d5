"""
Base repository with common functionality
"""
from typing import Optional, Sequence

from sqlalchemy import text
from sqlalchemy.sql.elements import ColumnClause

from shared.query_executor import QueryExecutor


class BaseRepository:
    """Base repository running raw SQL through the resilient executor"""

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    def execute_query(
        self,
        query: str,
        params: Optional[dict] = None,
        columns: Optional[Sequence[ColumnClause]] = None
    ) -> list:
        """Execute raw SQL query and return results

        ``columns`` types the result set so values come back as Python
        datetimes and decimals regardless of the driver.
        """
        stmt = text(query)
        if columns:
            stmt = stmt.columns(*columns)
        return self.executor.execute(
            lambda session: session.execute(stmt, params or {}).fetchall()
        )
