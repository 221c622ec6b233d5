"""
All SQLAlchemy models in a single module.

Two groups live here:
- tables this service owns and writes (insight cache, chat message log),
  registered on ``Base`` and created at startup;
- read-only mappings of the analytics views/tables maintained by the
  datastore, registered on ``AnalyticsBase`` so create_all never touches them.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, Index
from sqlalchemy import JSON as JSON_TYPE
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import Integer, String, Date, DateTime, Float, UUID as UUID_TYPE, Text

from scout.database import Base

AnalyticsBase = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored timestamp uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── Tables owned by this service ────────────────────────────────────────

class CachedInsight(Base):
    __tablename__ = "cached_insights"
    id = Column(UUID_TYPE(as_uuid=True), primary_key=True, default=uuid4)
    cache_key = Column(String(64), nullable=False)
    insight_type = Column(String, nullable=False)
    filter_context = Column(JSON_TYPE, nullable=True)
    llm_provider = Column(String, nullable=False)
    prompt = Column(Text, nullable=True)
    response = Column(JSON_TYPE, nullable=False)
    vibe_context = Column(String, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


Index("idx_cached_insights_key_created", CachedInsight.cache_key, CachedInsight.created_at)


class ChatMessageLog(Base):
    __tablename__ = "chat_messages"
    id = Column(UUID_TYPE(as_uuid=True), primary_key=True, default=uuid4)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    message_metadata = Column("metadata", JSON_TYPE, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


# ── Analytics read models (owned by the datastore) ──────────────────────

class DailyMetric(AnalyticsBase):
    __tablename__ = "mv_daily_metrics"
    date = Column(Date, primary_key=True)
    brand_id = Column(String, primary_key=True, default="all")
    revenue = Column(Float)
    transaction_count = Column(Integer)
    avg_basket_size = Column(Float)
    avg_duration = Column(Float)


class RegionalPerformance(AnalyticsBase):
    __tablename__ = "mv_regional_performance"
    region_id = Column(String, primary_key=True)
    region_name = Column(String)
    revenue = Column(Float)
    transactions = Column(Integer)
    unique_consumers = Column(Integer)
    avg_basket_size = Column(Float)


class Transaction(AnalyticsBase):
    __tablename__ = "transactions"
    id = Column(String, primary_key=True)
    transaction_date = Column(DateTime, index=True)
    store_id = Column(String)
    consumer_profile_id = Column(String, nullable=True)
    total_amount = Column(Float)
    payment_method = Column(String)
    basket_size = Column(Integer)
    duration_seconds = Column(Integer)
    request_method = Column(String)
    vibe_context = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=True)
