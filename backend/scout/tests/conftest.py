import os

# scout.database reads DATABASE_URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scout.config import Settings
from scout.database import Base
from scout.models import AnalyticsBase
from scout.tests.fakes import FakeRepository


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    AnalyticsBase.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def settings(monkeypatch):
    for var in ("INSIGHT_PROVIDERS", "CHAT_PROVIDERS", "CACHE_ENABLED", "INSIGHT_SINGLE_FLIGHT"):
        monkeypatch.delenv(var, raising=False)
    return Settings()


@pytest.fixture
def fake_repo():
    return FakeRepository()
