"""
Comparison Cache - memoized comparison results keyed by cache key

The engine never decides when to bypass the cache; the calling layer
passes force_refresh. Stores only need get/put:

    cached = await cache.get(key)        # CachedAnalysis or None
    await cache.put(key, CachedAnalysis(...))

The SQL store keeps one row per cache_key in bid_comparison_analyses
(see infra/db/migrations). Concurrent writers for the same key are the
database's concern: last write wins.
"""
import json
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol
from uuid import uuid4

import structlog
from sqlalchemy import DateTime, Text, bindparam, text

from packages.common.database import DatabaseSessionManager
from packages.domain.bid_comparison.schemas import CachedAnalysis, MatchingResult

logger = structlog.get_logger()


class ComparisonCache(Protocol):
    """Protocol for the cache/store collaborator"""

    async def get(self, key: str) -> Optional[CachedAnalysis]:
        ...

    async def put(self, key: str, analysis: CachedAnalysis) -> None:
        ...


class InMemoryComparisonCache:
    """Process-local store for scripts and tests"""

    def __init__(self):
        self._entries: Dict[str, CachedAnalysis] = {}

    async def get(self, key: str) -> Optional[CachedAnalysis]:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("comparison_cache_miss", cache_key=key)
            return None
        logger.debug("comparison_cache_hit", cache_key=key)
        return entry.model_copy(deep=True)

    async def put(self, key: str, analysis: CachedAnalysis) -> None:
        if analysis.cached_at is None:
            analysis = analysis.model_copy(update={"cached_at": datetime.now(timezone.utc)})
        self._entries[key] = analysis.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._entries)


class SqlComparisonCache:
    """
    Store backed by the bid_comparison_analyses table.

    Payloads are JSON-encoded text so the row is readable by any client.
    """

    def __init__(self, sessions: DatabaseSessionManager):
        self.sessions = sessions

    async def get(self, key: str) -> Optional[CachedAnalysis]:
        query = text("""
            SELECT
                comparison_type,
                matching_result,
                analysis_result,
                cached_at
            FROM bid_comparison_analyses
            WHERE cache_key = :cache_key
        """).columns(
            comparison_type=Text(),
            matching_result=Text(),
            analysis_result=Text(),
            cached_at=DateTime(timezone=True),
        )

        async with self.sessions.session() as db:
            result = await db.execute(query, {"cache_key": key})
            row = result.fetchone()

        if row is None:
            logger.debug("comparison_cache_miss", cache_key=key)
            return None

        logger.debug("comparison_cache_hit", cache_key=key, cached_at=str(row.cached_at))
        return CachedAnalysis(
            comparison_type=row.comparison_type,
            matching=MatchingResult.model_validate_json(row.matching_result),
            analysis=json.loads(row.analysis_result),
            cached_at=row.cached_at,
        )

    async def put(self, key: str, analysis: CachedAnalysis) -> None:
        now = datetime.now(timezone.utc)
        params = {
            "cache_key": key,
            "comparison_type": analysis.comparison_type,
            "matching_result": analysis.matching.model_dump_json(),
            "analysis_result": json.dumps(analysis.analysis),
            "cached_at": analysis.cached_at or now,
            "updated_at": now,
        }

        async with self.sessions.session() as db:
            existing = await db.execute(
                text("SELECT id FROM bid_comparison_analyses WHERE cache_key = :cache_key"),
                {"cache_key": key},
            )

            if existing.fetchone():
                query = text("""
                    UPDATE bid_comparison_analyses
                    SET
                        comparison_type = :comparison_type,
                        matching_result = :matching_result,
                        analysis_result = :analysis_result,
                        cached_at = :cached_at,
                        updated_at = :updated_at
                    WHERE cache_key = :cache_key
                """)
                action = "updated"
            else:
                query = text("""
                    INSERT INTO bid_comparison_analyses (
                        id,
                        cache_key,
                        comparison_type,
                        matching_result,
                        analysis_result,
                        cached_at,
                        updated_at
                    ) VALUES (
                        :id,
                        :cache_key,
                        :comparison_type,
                        :matching_result,
                        :analysis_result,
                        :cached_at,
                        :updated_at
                    )
                """)
                params["id"] = str(uuid4())
                action = "inserted"

            query = query.bindparams(
                bindparam("cached_at", type_=DateTime(timezone=True)),
                bindparam("updated_at", type_=DateTime(timezone=True)),
            )
            await db.execute(query, params)

        logger.info("comparison_cache_stored",
                    cache_key=key,
                    comparison_type=analysis.comparison_type,
                    action=action)
