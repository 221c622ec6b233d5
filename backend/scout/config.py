"""
Runtime configuration for the Scout insights backend.

Everything is read from the environment (a local .env is loaded first), so the
same image can run against different datastores and provider accounts.
"""

import os
import logging
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

PROVIDER_NAMES = ("openai", "anthropic", "gemini")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


def _provider_pair(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    names = [p.strip().lower() for p in raw.split(",") if p.strip()]
    unknown = [p for p in names if p not in PROVIDER_NAMES]
    if unknown:
        raise ValueError(f"{name} contains unknown providers: {unknown}")
    if len(names) != 2 or names[0] == names[1]:
        raise ValueError(f"{name} must name exactly two distinct providers, got {raw!r}")
    return names


class Settings:
    """Configuration for the API, the datastore and both LLM pipelines."""

    def __init__(self):
        self.database_url: Optional[str] = os.getenv("DATABASE_URL")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

        # Provider credentials
        self.openai_api_key = os.getenv("OPENAI_API_KEY")
        self.openai_api_base = os.getenv("OPENAI_API_BASE")
        self.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY")
        self.gemini_api_key = os.getenv("GEMINI_API_KEY")
        # For google-generativeai, api_endpoint should be just the host (no scheme/path)
        self.gemini_api_base = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com")

        # Models
        self.openai_model = os.getenv("OPENAI_MODEL", "gpt-4")
        self.anthropic_insight_model = os.getenv("ANTHROPIC_INSIGHT_MODEL", "claude-3-opus-20240229")
        self.anthropic_chat_model = os.getenv("ANTHROPIC_CHAT_MODEL", "claude-3-sonnet-20240229")
        self.gemini_model = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

        self.temperature = float(os.getenv("LLM_TEMPERATURE", "0.7"))
        self.max_tokens = int(os.getenv("LLM_MAX_TOKENS", "1000"))

        # Primary first, secondary second
        self.insight_providers = _provider_pair("INSIGHT_PROVIDERS", "openai,anthropic")
        self.chat_providers = _provider_pair("CHAT_PROVIDERS", "anthropic,openai")

        # Insight cache
        self.cache_enabled = _env_bool("CACHE_ENABLED", True)
        self.insight_cache_ttl_seconds = int(os.getenv("INSIGHT_CACHE_TTL_SECONDS", "300"))
        self.insight_single_flight = _env_bool("INSIGHT_SINGLE_FLIGHT", True)

        # Row caps that keep prompts bounded
        self.trend_context_limit = int(os.getenv("TREND_CONTEXT_LIMIT", "30"))
        self.product_context_limit = int(os.getenv("PRODUCT_CONTEXT_LIMIT", "20"))
        self.behavior_context_limit = int(os.getenv("BEHAVIOR_CONTEXT_LIMIT", "100"))
        self.geographic_context_limit = int(os.getenv("GEOGRAPHIC_CONTEXT_LIMIT", "10"))

        missing = [
            name for name, key in (
                ("openai", self.openai_api_key),
                ("anthropic", self.anthropic_api_key),
                ("gemini", self.gemini_api_key),
            )
            if not key and (name in self.insight_providers or name in self.chat_providers)
        ]
        if missing:
            logger.warning(f"LLM providers without API keys: {missing}; calls to them will fail over.")

    def api_key_for(self, provider: str) -> Optional[str]:
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
        }[provider]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
