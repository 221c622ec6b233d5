"""
Analytics data access and the light aggregation done on top of it.

The datastore already pre-aggregates (materialized views and stored
functions); this module only reads bounded row sets and shapes them for the
dashboard and for LLM prompt context. The trend summary is a naive
week-over-week comparison with a single-point linear projection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd
from sqlalchemy import text
from sqlalchemy.orm import Session

from scout.filters import FilterContext, resolve_date_range
from scout.models import DailyMetric, RegionalPerformance, Transaction

logger = logging.getLogger(__name__)

WINDOW_DAYS = 7

# source column -> trend field
_TREND_COLUMNS = {
    "revenue": "revenue",
    "transaction_count": "volume",
    "avg_basket_size": "basket",
    "avg_duration": "duration",
}


def _serialize_val(v):
    if isinstance(v, Decimal):
        return float(v)
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    return v


def _rows_to_dicts(rows) -> List[Dict[str, Any]]:
    return [{k: _serialize_val(v) for k, v in dict(row).items()} for row in rows]


class AnalyticsRepository:
    """Read-only access to the analytics views.

    Each call opens its own session so calls can run on separate threads.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _select(self, columns: Sequence, query_fn) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            q = query_fn(db.query(*columns))
            return _rows_to_dicts(row._asdict() for row in q.all())

    def daily_metrics(self, start: datetime, end: datetime, brand: Optional[str] = None) -> List[Dict[str, Any]]:
        def build(q):
            q = q.filter(DailyMetric.date >= start.date(), DailyMetric.date <= end.date())
            if brand:
                q = q.filter(DailyMetric.brand_id == brand)
            return q.order_by(DailyMetric.date.asc())
        return self._select(DailyMetric.__table__.columns, build)

    def recent_daily_metrics(self, limit: int, columns: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        cols = [DailyMetric.__table__.c[c] for c in columns] if columns else DailyMetric.__table__.columns
        return self._select(cols, lambda q: q.order_by(DailyMetric.date.desc()).limit(limit))

    def regional_performance(self, limit: Optional[int] = None, columns: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        cols = [RegionalPerformance.__table__.c[c] for c in columns] if columns else RegionalPerformance.__table__.columns

        def build(q):
            q = q.order_by(RegionalPerformance.revenue.desc())
            return q.limit(limit) if limit else q
        return self._select(cols, build)

    def transaction_behaviors(
        self,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        def build(q):
            if start is not None:
                q = q.filter(Transaction.transaction_date >= start)
            if end is not None:
                q = q.filter(Transaction.transaction_date <= end)
            return q.limit(limit) if limit else q
        return self._select([Transaction.request_method, Transaction.payment_method], build)

    # Stored functions (PostgreSQL only)

    def _call(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            result = db.execute(text(sql), params).mappings().all()
            return _rows_to_dicts(result)

    def top_products(self, limit: int) -> List[Dict[str, Any]]:
        return self._call("SELECT * FROM get_top_products(:limit)", {"limit": limit})

    def top_products_by_revenue(self, limit: int) -> List[Dict[str, Any]]:
        return self._call("SELECT * FROM get_top_products_by_revenue(:limit)", {"limit": limit})

    def product_mix(self, start: datetime, end: datetime, brand: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._call(
            "SELECT * FROM get_product_mix(:start_date, :end_date, :brand_filter)",
            {"start_date": start.isoformat(), "end_date": end.isoformat(), "brand_filter": brand},
        )


# ── Trend aggregation ───────────────────────────────────────────────────

@dataclass
class TrendPoint:
    date: str
    revenue: float
    volume: int
    basket: float
    duration: float


@dataclass
class WindowTotals:
    revenue: float = 0.0
    volume: int = 0
    basket: float = 0.0
    duration: float = 0.0


@dataclass
class TrendSummary:
    current: float
    previous: float
    change: Optional[float]
    forecast: Optional[float]
    has_baseline: bool


@dataclass
class TrendResult:
    trends: List[TrendPoint]
    summary: TrendSummary
    comparison: Optional[List[Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        summary = asdict(self.summary)
        summary["hasBaseline"] = summary.pop("has_baseline")
        return {
            "trends": [asdict(t) for t in self.trends],
            "summary": summary,
            "comparison": self.comparison,
        }


def group_daily_rows(rows: Sequence[Dict[str, Any]]) -> List[TrendPoint]:
    """Collapse rows sharing a date into one point, in first-seen date order.

    Basket size and duration are summed like the other measures.
    """
    if not rows:
        return []
    df = pd.DataFrame(list(rows))
    for src in _TREND_COLUMNS:
        if src not in df.columns:
            df[src] = 0
        df[src] = pd.to_numeric(df[src], errors="coerce").fillna(0)
    df["date"] = df["date"].map(str)

    grouped = (
        df.groupby("date", sort=False)[list(_TREND_COLUMNS)]
        .sum()
        .reset_index()
        .rename(columns=_TREND_COLUMNS)
    )
    return [
        TrendPoint(
            date=r.date,
            revenue=float(r.revenue),
            volume=int(r.volume),
            basket=float(r.basket),
            duration=float(r.duration),
        )
        for r in grouped.itertuples(index=False)
    ]


def summarize_window(points: Sequence[TrendPoint]) -> WindowTotals:
    """Sum revenue and volume; basket and duration are per-day averages over a 7-day week."""
    totals = WindowTotals()
    for p in points:
        totals.revenue += p.revenue
        totals.volume += p.volume
        totals.basket += p.basket / WINDOW_DAYS
        totals.duration += p.duration / WINDOW_DAYS
    return totals


def project_forecast(current_revenue: float, previous_revenue: float) -> TrendSummary:
    """Week-over-week change and the naive next-week projection.

    With no prior-period revenue there is nothing to compare against, so
    change and forecast are left as None instead of a non-finite number.
    """
    if not previous_revenue:
        return TrendSummary(
            current=current_revenue,
            previous=previous_revenue,
            change=None,
            forecast=None,
            has_baseline=False,
        )
    change = current_revenue / previous_revenue - 1
    return TrendSummary(
        current=current_revenue,
        previous=previous_revenue,
        change=change,
        forecast=current_revenue * (1 + change),
        has_baseline=True,
    )


def summarize_trends(rows: Sequence[Dict[str, Any]], compare_mode: bool = False) -> TrendResult:
    trends = group_daily_rows(rows)
    current = summarize_window(trends[-WINDOW_DAYS:])
    previous = summarize_window(trends[-2 * WINDOW_DAYS:-WINDOW_DAYS])
    comparison = None
    if compare_mode:
        comparison = [
            {"period": "Current", **asdict(current)},
            {"period": "Previous", **asdict(previous)},
        ]
    return TrendResult(
        trends=trends,
        summary=project_forecast(current.revenue, previous.revenue),
        comparison=comparison,
    )


# ── Dashboard-facing fetchers ───────────────────────────────────────────

def fetch_transaction_trends(repo: AnalyticsRepository, filters: FilterContext, now: Optional[datetime] = None) -> TrendResult:
    start, end = resolve_date_range(filters.date_range, now)
    rows = repo.daily_metrics(start, end, filters.brand_filter)
    logger.debug(f"Fetched {len(rows)} daily metric rows for {filters.date_range.value}")
    return summarize_trends(rows, filters.compare_mode)


def fetch_product_mix(repo: AnalyticsRepository, filters: FilterContext, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    start, end = resolve_date_range(filters.date_range, now)
    return repo.product_mix(start, end, filters.brand_filter)


def summarize_behaviors(rows: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Count request and payment methods across transactions."""
    behavior: Dict[str, Any] = {"requestMethods": {}, "paymentMethods": {}, "acceptanceRate": 0}
    if not rows:
        return behavior
    df = pd.DataFrame(list(rows))
    for column, key in (("request_method", "requestMethods"), ("payment_method", "paymentMethods")):
        if column in df.columns:
            behavior[key] = {str(k): int(v) for k, v in df[column].value_counts(sort=False).items()}
    return behavior


def fetch_consumer_behavior(repo: AnalyticsRepository, filters: FilterContext, now: Optional[datetime] = None) -> Dict[str, Any]:
    start, end = resolve_date_range(filters.date_range, now)
    return summarize_behaviors(repo.transaction_behaviors(start=start, end=end))


def fetch_geographic_data(repo: AnalyticsRepository, filters: FilterContext) -> List[Dict[str, Any]]:
    return repo.regional_performance(
        columns=["region_id", "region_name", "revenue", "transactions", "unique_consumers", "avg_basket_size"],
    )
