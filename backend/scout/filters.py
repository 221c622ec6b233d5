"""
Filter context shared by every analytics query and insight request.

The dashboard sends camelCase keys (``dateRange``, ``compareMode``,
``vibeContext``); the Python side uses snake_case. Values are closed
enumerations so anything unexpected is rejected at the API boundary.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DateRange(str, Enum):
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    LAST_90_DAYS = "last90days"
    CUSTOM = "custom"


class Geography(str, Enum):
    ALL = "all"
    NCR = "ncr"
    LUZON = "luzon"
    VISAYAS = "visayas"
    MINDANAO = "mindanao"


class Brand(str, Enum):
    ALL = "all"
    ALASKA = "alaska"
    OISHI = "oishi"
    CHAMPION = "champion"
    DELMONTE = "delmonte"
    WINSTON = "winston"


class Category(str, Enum):
    ALL = "all"
    BEVERAGES = "beverages"
    SNACKS = "snacks"
    PERSONAL = "personal"
    HOUSEHOLD = "household"
    TOBACCO = "tobacco"


class VibeContext(str, Enum):
    INTENT = "intent"
    TENSION = "tension"
    EQUITY = "equity"


class DashboardModule(str, Enum):
    TRENDS = "trends"
    PRODUCTS = "products"
    BEHAVIOR = "behavior"
    PROFILING = "profiling"
    COMPARATIVE = "comparative"
    GEOGRAPHIC = "geographic"


class FilterContext(BaseModel):
    """User-selected analytic scope. Defaults match the dashboard on load."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    date_range: DateRange = DateRange.LAST_30_DAYS
    geography: Geography = Geography.ALL
    brand: Brand = Brand.ALL
    category: Category = Category.ALL
    compare_mode: bool = False
    vibe_context: VibeContext = VibeContext.INTENT

    def to_wire(self) -> Dict[str, Any]:
        """camelCase, JSON-safe dict (what the dashboard sent us)."""
        return self.model_dump(mode="json", by_alias=True)

    @property
    def brand_filter(self) -> Optional[str]:
        return None if self.brand == Brand.ALL else self.brand.value


# Days of history behind each date-range option; anything else falls back to 30.
_RANGE_DAYS = {
    DateRange.LAST_7_DAYS: 7,
    DateRange.LAST_30_DAYS: 30,
    DateRange.LAST_90_DAYS: 90,
}


def resolve_date_range(date_range, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Turn a date-range option into a concrete ``(start, end)`` window ending now."""
    end = now or datetime.now()
    try:
        key = DateRange(date_range)
    except ValueError:
        key = None
    days = _RANGE_DAYS.get(key, 30)
    return end - timedelta(days=days), end
