"""
Repository for OHLC candles
"""
from typing import List, Dict

from sqlalchemy import column, DateTime, Numeric

from .base_repository import BaseRepository

RESULT_COLUMNS = (
    column("time", DateTime(timezone=True)),
    column("open_price", Numeric(20, 8)),
    column("high_price", Numeric(20, 8)),
    column("low_price", Numeric(20, 8)),
    column("close_price", Numeric(20, 8)),
    column("base_volume", Numeric(30, 8)),
)


class CandleRepository(BaseRepository):
    """Repository for candle data access across the 1m table and aggregates"""

    def find_latest(
        self,
        relation: str,
        time_column: str,
        symbol: str,
        limit: int
    ) -> List[Dict]:
        """Find latest candles for a symbol, newest first

        ``relation`` and ``time_column`` must come from the resolution map,
        never from user input.
        """
        query = f"""
            SELECT
                {time_column} AS time,
                open_price,
                high_price,
                low_price,
                close_price,
                base_volume
            FROM {relation}
            WHERE symbol = :symbol
            ORDER BY {time_column} DESC
            LIMIT :limit
        """

        rows = self.execute_query(query, {"symbol": symbol, "limit": limit}, columns=RESULT_COLUMNS)
        return [self._row_to_dict(row) for row in rows]

    @staticmethod
    def _row_to_dict(row) -> Dict:
        """Convert database row to dictionary"""
        return {
            "time": row[0],
            "open": row[1],
            "high": row[2],
            "low": row[3],
            "close": row[4],
            "volume": row[5],
        }
