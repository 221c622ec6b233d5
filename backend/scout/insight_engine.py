"""
Insight Engine: LLM-written narrative insights for the active dashboard module.

Flow per request:
1. Look the request shape up in the insight cache; a fresh hit is returned as-is.
2. Build a bounded data context for the module from the analytics views.
3. Render one prompt (module + vibe directive + context JSON).
4. Ask the primary provider (JSON mode); on any failure ask the secondary.
5. Normalize, store in the cache under the provider that answered, return.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from cache.cache import SingleFlight
from scout.analytics import AnalyticsRepository
from scout.config import Settings
from scout.filters import DashboardModule, FilterContext, VibeContext
from scout.insight_cache import InsightCache, build_cache_key
from scout.insight_models import Insight
from scout.llm_service import LLMProvider, call_with_fallback, parse_insight_content

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a Philippine retail analytics expert specializing in sari-sari store insights."

VIBE_DIRECTIVES = {
    VibeContext.INTENT: "Focus on strategic intentions, goals, and forward-looking opportunities.",
    VibeContext.TENSION: "Highlight challenges, conflicts, competitive pressures, and areas needing attention.",
    VibeContext.EQUITY: "Emphasize brand value, customer loyalty, market position, and competitive advantages.",
}

INSIGHT_PROMPT_TEMPLATE = """You are analyzing Philippine retail data for sari-sari stores.
Module: {module}
Vibe Context: {vibe} - {directive}

Data Context:
{context}

Generate an insight that:
1. Provides a main insight (2-3 sentences)
2. Lists 2-3 key points
3. Detects any anomalies if present
4. Offers 2 actionable recommendations

Format as JSON with keys: mainInsight, keyPoints[], anomaly (optional), recommendations[]"""


class InsightGenerationError(Exception):
    """Neither provider produced a usable insight."""


def render_insight_prompt(context: Dict[str, Any], vibe_context: VibeContext, module: DashboardModule) -> str:
    vibe = VibeContext(vibe_context)
    return INSIGHT_PROMPT_TEMPLATE.format(
        module=DashboardModule(module).value,
        vibe=vibe.value,
        directive=VIBE_DIRECTIVES[vibe],
        context=json.dumps(context, indent=2, default=str),
    )


class InsightGenerator:
    """Generates one normalized insight per (filters, module, vibe) request."""

    def __init__(
        self,
        repository: AnalyticsRepository,
        cache: InsightCache,
        primary: LLMProvider,
        secondary: LLMProvider,
        settings: Settings,
        single_flight: Optional[SingleFlight] = None,
    ):
        self.repository = repository
        self.cache = cache
        self.primary = primary
        self.secondary = secondary
        self.settings = settings
        if single_flight is None and settings.insight_single_flight:
            single_flight = SingleFlight()
        self.single_flight = single_flight

        self._context_builders: Dict[DashboardModule, Callable[[FilterContext], Dict[str, Any]]] = {
            DashboardModule.TRENDS: self._trend_context,
            DashboardModule.PRODUCTS: self._product_context,
            DashboardModule.BEHAVIOR: self._behavior_context,
            DashboardModule.GEOGRAPHIC: self._geographic_context,
        }

    # ── context builders ────────────────────────────────────────────────

    def _trend_context(self, filters: FilterContext) -> Dict[str, Any]:
        rows = self.repository.recent_daily_metrics(self.settings.trend_context_limit)
        return {"recentTrends": rows, "filters": filters.to_wire()}

    def _product_context(self, filters: FilterContext) -> Dict[str, Any]:
        rows = self.repository.top_products(self.settings.product_context_limit)
        return {"topProducts": rows, "filters": filters.to_wire()}

    def _behavior_context(self, filters: FilterContext) -> Dict[str, Any]:
        rows = self.repository.transaction_behaviors(limit=self.settings.behavior_context_limit)
        return {"behaviors": rows, "filters": filters.to_wire()}

    def _geographic_context(self, filters: FilterContext) -> Dict[str, Any]:
        rows = self.repository.regional_performance(limit=self.settings.geographic_context_limit)
        return {"regionalPerformance": rows, "filters": filters.to_wire()}

    def build_context(self, module: DashboardModule, filters: FilterContext) -> Dict[str, Any]:
        builder = self._context_builders.get(DashboardModule(module))
        if builder is None:
            return {"module": DashboardModule(module).value, "filters": filters.to_wire()}
        return builder(filters)

    # ── generation ──────────────────────────────────────────────────────

    def generate(
        self,
        filters: FilterContext,
        active_module: DashboardModule,
        vibe_context: Optional[VibeContext] = None,
    ) -> Insight:
        module = DashboardModule(active_module)
        vibe = VibeContext(vibe_context) if vibe_context is not None else filters.vibe_context
        key = build_cache_key(filters, module, vibe)

        cached = self.cache.lookup(key)
        if cached is not None:
            return cached

        if self.single_flight is None:
            return self._generate_uncached(key, filters, module, vibe)
        return self.single_flight.do("insight", key, lambda: self._generate_uncached(key, filters, module, vibe))

    def _generate_uncached(
        self,
        key: str,
        filters: FilterContext,
        module: DashboardModule,
        vibe: VibeContext,
    ) -> Insight:
        context = self.build_context(module, filters)
        prompt = render_insight_prompt(context, vibe, module)

        def attempt(provider: LLMProvider) -> Insight:
            # JSON mode is requested from the primary only; the secondary is
            # steered by the prompt and parsed the same way.
            response = provider.generate(
                SYSTEM_PROMPT,
                [{"role": "user", "content": prompt}],
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                json_mode=provider is self.primary,
            )
            content = parse_insight_content(response.raw_text, provider.name)
            return Insight(
                **content.model_dump(),
                llm_provider=response.label,
                timestamp=datetime.now(timezone.utc).isoformat(),
                tokens_used=response.tokens_used,
                response_time_ms=response.latency_ms,
            )

        try:
            insight, provider = call_with_fallback(self.primary, self.secondary, attempt, f"insight[{module.value}]")
        except Exception as e:
            logger.error(f"Insight generation failed for module={module.value} on both providers: {e}")
            raise InsightGenerationError(f"No provider could generate a {module.value} insight") from e

        self.cache.store(
            key,
            module,
            provider.name,
            insight,
            vibe,
            insight.tokens_used,
            insight.response_time_ms,
            prompt=prompt,
            filters=filters.to_wire(),
        )
        logger.info(f"Generated {module.value} insight via {provider.name} in {insight.response_time_ms}ms")
        return insight
