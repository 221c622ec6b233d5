"""
Conversational assistant for the dashboard.

``ChatOrchestrator`` answers one user turn: it snapshots the dashboard data,
builds a system prompt around it, sends the caller's history plus the new
turn to the primary provider (secondary on failure) and logs the exchange.
It keeps no conversation state. ``ChatSession`` is the client-side holder of
that state: an append-only history seeded with a greeting.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy.orm import Session

from scout.analytics import AnalyticsRepository
from scout.config import Settings
from scout.filters import FilterContext
from scout.insight_models import ChatReply
from scout.llm_service import LLMProvider, call_with_fallback
from scout.models import ChatMessageLog, utcnow

logger = logging.getLogger(__name__)

GREETING = (
    "Hello! I'm your Scout Databank AI assistant. I can help you analyze retail data, "
    "compare brands, explore geographic patterns, and uncover insights. What would you like to know?"
)
APOLOGY = "I encountered an error processing your request. Please try again."

CHAT_SYSTEM_PROMPT = """You are an AI assistant for Scout Databank Dashboard v2.5, analyzing Philippine retail data from sari-sari stores.

Current Context:
- Date Range: {date_range}
- Geography: {geography}
- Brand Filter: {brand}
- Category: {category}
- Vibe Context: {vibe}

Available Data:
{context}

You can help with:
1. Comparing brand performance across regions
2. Analyzing substitution patterns
3. Identifying consumer behavior trends
4. Geographic insights and regional differences
5. Product mix optimization
6. Forecasting and predictions

Be specific, data-driven, and provide actionable insights."""


class ChatError(Exception):
    """Neither provider answered the chat turn."""


class ChatBusyError(Exception):
    """A send is already in flight for this session."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatLog:
    """Durable log of chat turns. Never lets a logging failure reach the caller."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def log_exchange(self, user_message: str, assistant_response: str, provider: str) -> bool:
        try:
            with self.session_factory() as db:
                db.add_all([
                    ChatMessageLog(
                        role="user",
                        content=user_message,
                        message_metadata={"timestamp": _now_iso()},
                        created_at=utcnow(),
                    ),
                    ChatMessageLog(
                        role="assistant",
                        content=assistant_response,
                        message_metadata={"provider": provider, "timestamp": _now_iso()},
                        created_at=utcnow(),
                    ),
                ])
                db.commit()
        except Exception as e:
            logger.error(f"Failed to log chat interaction: {e}")
            return False
        return True


def _to_provider_messages(history: Sequence[Dict[str, str]], message: str) -> List[Dict[str, str]]:
    turns = [
        {"role": "user" if turn.get("role") == "user" else "assistant", "content": turn.get("content") or ""}
        for turn in history
    ]
    turns.append({"role": "user", "content": message})
    return turns


class ChatOrchestrator:
    def __init__(
        self,
        repository: AnalyticsRepository,
        chat_log: ChatLog,
        primary: LLMProvider,
        secondary: LLMProvider,
        settings: Settings,
    ):
        self.repository = repository
        self.chat_log = chat_log
        self.primary = primary
        self.secondary = secondary
        self.settings = settings

    def build_dashboard_context(self, filters: FilterContext) -> Dict[str, object]:
        """Fetch trends, regional summary and top products concurrently."""
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="chat-context") as pool:
            trends = pool.submit(self.repository.recent_daily_metrics, 7, ["date", "revenue", "transaction_count"])
            regional = pool.submit(self.repository.regional_performance, 5, ["region_name", "revenue", "transactions"])
            products = pool.submit(self.repository.top_products_by_revenue, 10)
            return {
                "trends": trends.result(),
                "regional": regional.result(),
                "products": products.result(),
            }

    def build_system_prompt(self, filters: FilterContext, context: Dict[str, object]) -> str:
        return CHAT_SYSTEM_PROMPT.format(
            date_range=filters.date_range.value,
            geography=filters.geography.value,
            brand=filters.brand.value,
            category=filters.category.value,
            vibe=filters.vibe_context.value,
            context=json.dumps(context, indent=2, default=str),
        )

    def send_message(self, message: str, filters: FilterContext, history: Sequence[Dict[str, str]]) -> ChatReply:
        context = self.build_dashboard_context(filters)
        system_prompt = self.build_system_prompt(filters, context)
        messages = _to_provider_messages(history, message)

        def attempt(provider: LLMProvider) -> str:
            return provider.generate(
                system_prompt,
                messages,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            ).raw_text

        try:
            content, provider = call_with_fallback(self.primary, self.secondary, attempt, "chat")
        except Exception as e:
            logger.error(f"Chat failed on both providers: {e}")
            raise ChatError("No provider could answer the chat message") from e

        self.chat_log.log_exchange(message, content, provider.name)
        return ChatReply(content=content, provider=provider.label)


# ── Client-held conversation ────────────────────────────────────────────

@dataclass
class ChatMessage:
    role: str
    content: str
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: str = field(default_factory=_now_iso)
    provider: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "provider": self.provider,
        }


class ChatSession:
    """Append-only conversation with one send in flight at a time.

    States: ``idle`` -> ``sending`` -> ``idle``. A failed send still appends
    an assistant message (the apology) so the history stays paired.
    """

    def __init__(self, orchestrator: ChatOrchestrator, session_id: Optional[str] = None):
        self.orchestrator = orchestrator
        self.session_id = session_id or uuid4().hex
        self._messages: List[ChatMessage] = [ChatMessage(role="assistant", content=GREETING)]
        self._state = "idle"
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._state

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def send(self, text: str, filters: FilterContext) -> ChatMessage:
        with self._lock:
            if self._state == "sending":
                raise ChatBusyError(f"Session {self.session_id} is already sending")
            self._state = "sending"
            history = [{"role": m.role, "content": m.content} for m in self._messages]
            self._messages.append(ChatMessage(role="user", content=text))

        try:
            reply = self.orchestrator.send_message(text, filters, history)
            answer = ChatMessage(role="assistant", content=reply.content, provider=reply.provider)
        except Exception as e:
            # Covers datastore failures while building context as well as ChatError.
            logger.warning(f"Chat session {self.session_id} send failed: {type(e).__name__}: {e}")
            answer = ChatMessage(role="assistant", content=APOLOGY)

        with self._lock:
            self._messages.append(answer)
            self._state = "idle"
        return answer

    def to_dict(self) -> Dict[str, object]:
        return {
            "sessionId": self.session_id,
            "state": self._state,
            "messages": [m.to_dict() for m in self._messages],
        }


class ChatSessionStore:
    """In-process registry of chat sessions; they live as long as the process."""

    def __init__(self, orchestrator: ChatOrchestrator):
        self.orchestrator = orchestrator
        self._sessions: Dict[str, ChatSession] = {}
        self._lock = threading.Lock()

    def create(self) -> ChatSession:
        session = ChatSession(self.orchestrator)
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None
