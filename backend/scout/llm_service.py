"""
LLM provider clients used by the insight engine and the chat assistant.

Supports OpenAI (chat completions), Anthropic (messages) and Gemini
(google-generativeai). Clients are plain objects built once at startup by
``build_providers`` and handed to the services that need them; every client
exposes the same ``generate`` call and returns the raw model text untouched.
Turning that text into an insight is a separate, schema-validated step
(``parse_insight_content``) so a bad answer is reported as malformed output
rather than as a transport failure.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar
from urllib.parse import urlparse

import anthropic
import google.generativeai as genai
import openai
from pydantic import ValidationError

from scout.config import Settings
from scout.insight_models import InsightContent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LLMError(Exception):
    """Base class for anything that makes a provider call unusable."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderError(LLMError):
    """Transport, auth, quota or configuration failure talking to a provider."""


class MalformedOutputError(LLMError):
    """The provider answered, but not with the structure we asked for."""

    def __init__(self, provider: str, message: str, raw_text: str = ""):
        super().__init__(provider, message)
        self.raw_text = raw_text


@dataclass
class ProviderResponse:
    raw_text: str
    provider: str
    label: str
    model: str
    tokens_used: Optional[int]
    latency_ms: int


class LLMProvider:
    """Common wrapper: credential check, timing and error typing.

    Subclasses implement ``_complete`` and return ``(text, tokens_used)``.
    """

    name = "base"

    def __init__(self, api_key: Optional[str], model: str, label: str):
        self.api_key = api_key
        self.model = model
        self.label = label

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def generate(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        json_mode: bool = False,
    ) -> ProviderResponse:
        if not self.available:
            raise ProviderError(self.name, "API key not configured")

        logger.info(f"Calling LLM provider={self.name} model={self.model} json_mode={json_mode}")
        t0 = time.time()
        try:
            text_out, tokens_used = self._complete(system_prompt, messages, temperature, max_tokens, json_mode)
        except LLMError:
            raise
        except Exception as e:
            raise ProviderError(self.name, f"{type(e).__name__}: {e}") from e

        text_out = (text_out or "").strip()
        if not text_out:
            raise ProviderError(self.name, "empty response")

        return ProviderResponse(
            raw_text=text_out,
            provider=self.name,
            label=self.label,
            model=self.model,
            tokens_used=tokens_used,
            latency_ms=int((time.time() - t0) * 1000),
        )

    def _complete(self, system_prompt, messages, temperature, max_tokens, json_mode) -> Tuple[str, Optional[int]]:
        raise NotImplementedError


class OpenAIProvider(LLMProvider):
    name = "openai"

    def __init__(self, api_key: Optional[str], model: str, label: str, api_base: Optional[str] = None):
        super().__init__(api_key, model, label)
        self.client = openai.OpenAI(api_key=api_key, base_url=api_base or None) if api_key else None

    def _complete(self, system_prompt, messages, temperature, max_tokens, json_mode):
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        completion = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "system", "content": system_prompt}, *messages],
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        usage = getattr(completion, "usage", None)
        return completion.choices[0].message.content or "", getattr(usage, "total_tokens", None)


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(self, api_key: Optional[str], model: str, label: str):
        super().__init__(api_key, model, label)
        self.client = anthropic.Anthropic(api_key=api_key) if api_key else None

    def _complete(self, system_prompt, messages, temperature, max_tokens, json_mode):
        # The messages API requires the conversation to open with a user turn.
        turns = list(messages)
        while turns and turns[0]["role"] != "user":
            turns.pop(0)
        if not turns:
            raise ProviderError(self.name, "no user message to send")

        message = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=turns,
        )
        text_out = "".join(getattr(block, "text", "") for block in message.content)
        usage = message.usage
        return text_out, usage.input_tokens + usage.output_tokens


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(self, api_key: Optional[str], model: str, label: str, api_base: Optional[str] = None):
        super().__init__(api_key, model, label)
        if api_key:
            parsed = urlparse(api_base or "")
            api_endpoint = parsed.netloc or parsed.path or None
            client_options = {"api_endpoint": api_endpoint} if api_endpoint else None
            genai.configure(api_key=api_key, client_options=client_options)

    def _complete(self, system_prompt, messages, temperature, max_tokens, json_mode):
        model_name = self.model
        if not model_name.startswith("models/"):
            model_name = f"models/{model_name}"
        model = genai.GenerativeModel(model_name, system_instruction=system_prompt)

        contents = [
            {"role": "model" if m["role"] == "assistant" else "user", "parts": [m["content"]]}
            for m in messages
        ]
        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if json_mode:
            generation_config["response_mime_type"] = "application/json"

        gen_response = model.generate_content(contents, generation_config=generation_config)

        text_out = ""
        if getattr(gen_response, "candidates", None):
            for part in gen_response.candidates[0].content.parts:
                if hasattr(part, "text"):
                    text_out = part.text
                    break
        if not text_out:
            text_out = (getattr(gen_response, "text", "") or "").strip()

        usage = getattr(gen_response, "usage_metadata", None)
        return text_out, getattr(usage, "total_token_count", None)


# Display labels differ between the insight panel and the chat widget.
_LABELS = {
    "insight": {"openai": "OpenAI GPT-4", "anthropic": "Claude 3 Opus", "gemini": "Gemini"},
    "chat": {"openai": "OpenAI", "anthropic": "Claude", "gemini": "Gemini"},
}


def build_provider(name: str, settings: Settings, purpose: str = "insight") -> LLMProvider:
    label = _LABELS[purpose][name]
    if name == "openai":
        return OpenAIProvider(settings.openai_api_key, settings.openai_model, label, settings.openai_api_base)
    if name == "anthropic":
        model = settings.anthropic_insight_model if purpose == "insight" else settings.anthropic_chat_model
        return AnthropicProvider(settings.anthropic_api_key, model, label)
    if name == "gemini":
        return GeminiProvider(settings.gemini_api_key, settings.gemini_model, label, settings.gemini_api_base)
    raise ValueError(f"Unknown LLM provider: {name}")


def build_providers(settings: Settings, purpose: str) -> Tuple[LLMProvider, LLMProvider]:
    """Primary and secondary provider for one pipeline ("insight" or "chat")."""
    names = settings.insight_providers if purpose == "insight" else settings.chat_providers
    primary, secondary = (build_provider(n, settings, purpose) for n in names)
    return primary, secondary


def call_with_fallback(
    primary: LLMProvider,
    secondary: LLMProvider,
    attempt: Callable[[LLMProvider], T],
    operation: str,
) -> Tuple[T, LLMProvider]:
    """Run ``attempt`` against the primary, then once against the secondary.

    The first success wins. A secondary failure propagates to the caller.
    """
    try:
        return attempt(primary), primary
    except Exception as e:
        kind = "malformed output" if isinstance(e, MalformedOutputError) else "provider failure"
        logger.warning(f"{operation}: {primary.name} failed ({kind}: {e}); falling back to {secondary.name}")
    return attempt(secondary), secondary


def _extract_json_text(response_text: str) -> Optional[str]:
    """Pull a JSON object out of code fences or the first {...} blob."""
    if "```json" in response_text:
        return response_text.split("```json", 1)[1].split("```", 1)[0].strip()
    if "```" in response_text:
        return response_text.split("```", 1)[1].split("```", 1)[0].strip()
    m = re.search(r"\{.*\}", response_text, re.S)
    return m.group(0) if m else None


def parse_insight_content(response_text: str, provider: str) -> InsightContent:
    """Validate raw model text against the insight schema.

    Raises MalformedOutputError when the text holds no JSON object or the
    object lacks the required fields.
    """
    try:
        response_json = json.loads(response_text)
    except json.JSONDecodeError:
        extracted = _extract_json_text(response_text)
        if not extracted:
            raise MalformedOutputError(provider, "response contains no JSON object", response_text)
        try:
            response_json = json.loads(extracted)
        except json.JSONDecodeError as e:
            raise MalformedOutputError(provider, f"unparseable JSON: {e}", response_text) from e

    if not isinstance(response_json, dict):
        raise MalformedOutputError(provider, "expected a JSON object", response_text)

    try:
        return InsightContent.model_validate(response_json)
    except ValidationError as e:
        raise MalformedOutputError(
            provider, f"insight schema mismatch: {e.error_count()} error(s)", response_text
        ) from e
