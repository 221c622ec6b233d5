"""
HTTP routes for the dashboard: analytics reads, AI insights and chat.

Services are built once in scout.main and reached through ``app.state``;
the dependency helpers below are the only place routes touch that state.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from scout import analytics
from scout.analytics import AnalyticsRepository
from scout.chat_service import ChatBusyError, ChatError, ChatOrchestrator, ChatSessionStore
from scout.filters import DashboardModule, FilterContext, VibeContext
from scout.insight_engine import InsightGenerationError, InsightGenerator

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request bodies ──────────────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InsightQuery(_CamelModel):
    filters: FilterContext = Field(default_factory=FilterContext)
    active_module: DashboardModule = DashboardModule.TRENDS
    vibe_context: Optional[VibeContext] = None


class HistoryTurn(BaseModel):
    role: str
    content: str


class ChatQuery(_CamelModel):
    message: str = Field(min_length=1)
    filters: FilterContext = Field(default_factory=FilterContext)
    history: List[HistoryTurn] = Field(default_factory=list)


class SessionMessage(_CamelModel):
    message: str = Field(min_length=1)
    filters: FilterContext = Field(default_factory=FilterContext)


# ── Dependencies ────────────────────────────────────────────────────────

def get_repository(request: Request) -> AnalyticsRepository:
    return request.app.state.repository


def get_insight_generator(request: Request) -> InsightGenerator:
    return request.app.state.insight_generator


def get_chat_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.chat_orchestrator


def get_chat_sessions(request: Request) -> ChatSessionStore:
    return request.app.state.chat_sessions


def _datastore_unavailable(e: SQLAlchemyError, what: str) -> HTTPException:
    logger.error(f"Datastore error while fetching {what}: {e}")
    return HTTPException(status_code=503, detail=f"Analytics datastore unavailable ({what})")


# ── Service info ────────────────────────────────────────────────────────

@router.get("/")
def read_root():
    return {"service": "scout-insights", "status": "ok"}


@router.get("/health")
def health_check(request: Request):
    try:
        with request.app.state.session_factory() as db:
            db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Health check database failure: {e}")
        db_status = "error"
    return {"status": "ok" if db_status == "connected" else "degraded", "database": db_status}


@router.get("/filters/defaults")
def default_filters():
    return FilterContext().to_wire()


# ── Analytics ───────────────────────────────────────────────────────────

@router.post("/analytics/trends")
def transaction_trends(filters: FilterContext, repo: AnalyticsRepository = Depends(get_repository)):
    try:
        return analytics.fetch_transaction_trends(repo, filters).to_dict()
    except SQLAlchemyError as e:
        raise _datastore_unavailable(e, "transaction trends")


@router.post("/analytics/product-mix")
def product_mix(filters: FilterContext, repo: AnalyticsRepository = Depends(get_repository)):
    try:
        return analytics.fetch_product_mix(repo, filters)
    except SQLAlchemyError as e:
        raise _datastore_unavailable(e, "product mix")


@router.post("/analytics/behavior")
def consumer_behavior(filters: FilterContext, repo: AnalyticsRepository = Depends(get_repository)):
    try:
        return analytics.fetch_consumer_behavior(repo, filters)
    except SQLAlchemyError as e:
        raise _datastore_unavailable(e, "consumer behavior")


@router.post("/analytics/geographic")
def geographic_data(filters: FilterContext, repo: AnalyticsRepository = Depends(get_repository)):
    try:
        return analytics.fetch_geographic_data(repo, filters)
    except SQLAlchemyError as e:
        raise _datastore_unavailable(e, "geographic data")


# ── Insights ────────────────────────────────────────────────────────────

@router.post("/insights")
def generate_insight(query: InsightQuery, generator: InsightGenerator = Depends(get_insight_generator)):
    try:
        insight = generator.generate(query.filters, query.active_module, query.vibe_context)
    except InsightGenerationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except SQLAlchemyError as e:
        raise _datastore_unavailable(e, "insight context")
    return insight.to_wire()


# ── Chat ────────────────────────────────────────────────────────────────

@router.post("/chat")
def chat(query: ChatQuery, orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator)):
    history: List[Dict[str, str]] = [turn.model_dump() for turn in query.history]
    try:
        reply = orchestrator.send_message(query.message, query.filters, history)
    except ChatError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except SQLAlchemyError as e:
        raise _datastore_unavailable(e, "chat context")
    return {"content": reply.content, "provider": reply.provider}


@router.post("/chat/sessions")
def create_chat_session(sessions: ChatSessionStore = Depends(get_chat_sessions)):
    return sessions.create().to_dict()


@router.get("/chat/sessions/{session_id}")
def get_chat_session(session_id: str, sessions: ChatSessionStore = Depends(get_chat_sessions)):
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    return session.to_dict()


@router.post("/chat/sessions/{session_id}/messages")
def send_chat_session_message(
    session_id: str,
    body: SessionMessage,
    sessions: ChatSessionStore = Depends(get_chat_sessions),
):
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat session not found")
    try:
        session.send(body.message, body.filters)
    except ChatBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.to_dict()


@router.delete("/chat/sessions/{session_id}")
def delete_chat_session(session_id: str, sessions: ChatSessionStore = Depends(get_chat_sessions)):
    if not sessions.delete(session_id):
        raise HTTPException(status_code=404, detail="Chat session not found")
    return {"deleted": session_id}
