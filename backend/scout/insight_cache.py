"""
Persisted insight cache.

Rows are only ever appended. A row counts as a hit while it is younger than
the freshness window; older rows are left in place and simply ignored, so
retention is up to the datastore.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cache.cache import stable_hash
from scout.filters import FilterContext, DashboardModule, VibeContext
from scout.insight_models import Insight
from scout.models import CachedInsight, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_SECONDS = 300


def build_cache_key(filters: FilterContext, active_module: DashboardModule, vibe_context: VibeContext) -> str:
    """Deterministic key for a (filters, module, vibe) request shape."""
    return stable_hash({
        "filters": filters.to_wire(),
        "activeModule": DashboardModule(active_module).value,
        "vibeContext": VibeContext(vibe_context).value,
    })


class InsightCache:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        freshness_seconds: int = DEFAULT_FRESHNESS_SECONDS,
        enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.freshness = timedelta(seconds=freshness_seconds)
        self.enabled = enabled
        self.clock = clock

    def lookup(self, key: str) -> Optional[Insight]:
        """Most recent fresh insight stored under ``key``, or None on a miss."""
        if not self.enabled:
            return None
        cutoff = self.clock() - self.freshness
        with self.session_factory() as db:
            row = (
                db.query(CachedInsight)
                .filter(CachedInsight.cache_key == key, CachedInsight.created_at >= cutoff)
                .order_by(CachedInsight.created_at.desc())
                .first()
            )
            if row is None:
                logger.debug(f"Insight cache miss key={key[:12]}")
                return None
            payload = row.response

        try:
            insight = Insight.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable cached insight key={key[:12]}: {e}")
            return None
        logger.info(f"Insight cache hit key={key[:12]} provider={insight.llm_provider}")
        return insight

    def store(
        self,
        key: str,
        module_type: DashboardModule,
        provider: str,
        insight: Insight,
        vibe_context: VibeContext,
        tokens_used: Optional[int],
        response_time_ms: Optional[int],
        prompt: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Append one cache row. Write failures are logged and reported as False."""
        if not self.enabled:
            return False
        row = CachedInsight(
            cache_key=key,
            insight_type=DashboardModule(module_type).value,
            filter_context=filters,
            llm_provider=provider,
            prompt=prompt,
            response=insight.to_wire(),
            vibe_context=VibeContext(vibe_context).value,
            tokens_used=tokens_used,
            response_time_ms=response_time_ms,
            created_at=self.clock(),
        )
        try:
            with self.session_factory() as db:
                db.add(row)
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store insight cache row key={key[:12]}: {e}")
            return False
        return True
