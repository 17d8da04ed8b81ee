from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING, MongoClient, UpdateOne
from pymongo.collection import Collection

from hedgi_agent.models import StoredMarket

logger = logging.getLogger(__name__)


class MarketStore:
    """Persisted market cache, one document per ticker."""

    def __init__(self, uri: str, db_name: str, client: Optional[Any] = None):
        # Ensure datetimes read from Mongo are timezone-aware (UTC).
        self.client = client if client is not None else MongoClient(uri, tz_aware=True)
        self.db = self.client[db_name]
        self.markets_col: Collection = self.db["markets"]
        self._ensure_indexes()

    def _ensure_indexes(self) -> None:
        self.markets_col.create_index([("ticker", ASCENDING)], unique=True, name="markets_ticker_unique")
        self.markets_col.create_index([("platform", ASCENDING)])
        self.markets_col.create_index([("title", ASCENDING)])

    def upsert_markets(self, markets: Iterable[StoredMarket]) -> int:
        now = datetime.now(timezone.utc)
        operations = [
            UpdateOne(
                {"ticker": m.ticker},
                {"$set": {**m.model_dump(), "last_updated": now}},
                upsert=True,
            )
            for m in markets
        ]
        if not operations:
            return 0
        self.markets_col.bulk_write(operations, ordered=False)
        return len(operations)

    def list_markets(self, platform: Optional[str] = None) -> List[StoredMarket]:
        query: Dict[str, Any] = {"platform": platform} if platform else {}
        cursor = self.markets_col.find(query, {"_id": 0}).sort("ticker", ASCENDING)
        out: List[StoredMarket] = []
        for doc in cursor:
            doc.pop("last_updated", None)
            try:
                out.append(StoredMarket(**doc))
            except ValueError as exc:
                logger.warning("Skipping malformed market document: %s", str(exc))
        return out

    def count_by_platform(self) -> Dict[str, int]:
        rows = self.markets_col.aggregate([{"$group": {"_id": "$platform", "count": {"$sum": 1}}}])
        return {str(row["_id"]): int(row["count"]) for row in rows}
