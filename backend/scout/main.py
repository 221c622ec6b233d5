import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional, Tuple

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from scout.analytics import AnalyticsRepository
from scout.chat_service import ChatLog, ChatOrchestrator, ChatSessionStore
from scout.config import Settings, get_settings
from scout.insight_cache import InsightCache
from scout.insight_engine import InsightGenerator
from scout.llm_service import LLMProvider, build_providers
from scout.routes import router

settings = get_settings()

# Logging setup (structured-ish JSON)
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='{"time":"%(asctime)s","level":"%(levelname)s","message":"%(message)s","module":"%(name)s"}',
)
logger = logging.getLogger(__name__)


def create_db_and_tables(bind):
    # Only the tables this service owns; analytics views belong to the datastore.
    from scout.database import Base

    logger.info("Connecting to database to create tables...")
    Base.metadata.create_all(bind=bind)
    logger.info("Tables created successfully.")


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    insight_providers: Optional[Tuple[LLMProvider, LLMProvider]] = None,
    chat_providers: Optional[Tuple[LLMProvider, LLMProvider]] = None,
    repository: Optional[AnalyticsRepository] = None,
    create_tables: bool = True,
) -> FastAPI:
    """Wire the services once and expose them to the routes via app.state."""
    settings = settings or get_settings()
    if session_factory is None:
        from scout.database import SessionLocal
        session_factory = SessionLocal
    insight_primary, insight_secondary = insight_providers or build_providers(settings, "insight")
    chat_primary, chat_secondary = chat_providers or build_providers(settings, "chat")

    repository = repository or AnalyticsRepository(session_factory)
    cache = InsightCache(
        session_factory,
        freshness_seconds=settings.insight_cache_ttl_seconds,
        enabled=settings.cache_enabled,
    )
    generator = InsightGenerator(repository, cache, insight_primary, insight_secondary, settings)
    orchestrator = ChatOrchestrator(repository, ChatLog(session_factory), chat_primary, chat_secondary, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        bind = getattr(session_factory, "kw", {}).get("bind")
        if create_tables and bind is not None:
            try:
                create_db_and_tables(bind)
            except Exception as e:
                logger.error(f"Error creating tables: {e}")
        logger.info(
            f"Insight providers: {insight_primary.name} -> {insight_secondary.name}; "
            f"chat providers: {chat_primary.name} -> {chat_secondary.name}"
        )
        yield

    app = FastAPI(title="Scout Insights API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.repository = repository
    app.state.insight_cache = cache
    app.state.insight_generator = generator
    app.state.chat_orchestrator = orchestrator
    app.state.chat_sessions = ChatSessionStore(orchestrator)

    app.include_router(router)
    return app


app = create_app()
