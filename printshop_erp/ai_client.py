"""
Thin wrapper around the OpenAI chat completions API.

Every AI feature goes through :class:`AIClient`, which

* refuses to call the model when AI is switched off or the host is offline,
* retries failed requests with exponential backoff (cancellation is never
  retried),
* strips markdown code fences and parses JSON answers,
* collects de-duplicated web sources for search-grounded answers.

Prompt wording lives in :mod:`printshop_erp.ai_service`.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

import requests

from .config import Settings, get_settings
from .errors import (
    AICancelledError,
    AIDisabledError,
    AIResponseParseError,
    AIUnavailableError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUPPORTED_ATTACHMENT_TYPES = ("application/pdf", "image/jpeg", "image/png", "image/webp")

_FENCE_OPEN = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```$")

# Errors that mean "do not try again".
_NOT_RETRYABLE = (AICancelledError, AIDisabledError, AIUnavailableError, ConfigurationError)


def is_online(settings: Settings) -> bool:
    """Probe ``AI_ONLINE_CHECK_URL``; without one the host is assumed online."""
    if not settings.ai_online_check_url:
        return True
    try:
        requests.head(settings.ai_online_check_url, timeout=3)
    except requests.RequestException:
        return False
    return True


def ensure_available(
    settings: Optional[Settings] = None, online_check: Optional[Callable[[Settings], bool]] = None
) -> None:
    settings = settings or get_settings()
    if settings.ai_disabled:
        raise AIDisabledError("AI features are currently disabled.")
    if not (online_check or is_online)(settings):
        raise AIUnavailableError("You are offline. Please check your network connection.")


def with_retry(
    fn: Callable[[], T],
    *,
    retries: int = 2,
    delay: float = 0.5,
    cancel: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` once plus up to ``retries`` more times.

    Waits ``delay``, then ``2 * delay`` and so on between attempts.  A set
    ``cancel`` event or an :class:`AICancelledError` stops immediately.
    """
    for attempt in range(retries + 1):
        if cancel is not None and cancel.is_set():
            raise AICancelledError("AI request was cancelled.")
        try:
            return fn()
        except _NOT_RETRYABLE:
            raise
        except Exception as exc:
            if attempt == retries:
                raise
            wait = delay * (2 ** attempt)
            logger.warning(
                "AI API call failed, retrying in %.1fs (%d retries left): %s", wait, retries - attempt, exc
            )
            sleep(wait)
    raise AssertionError("unreachable")


def strip_code_fence(text: Optional[str]) -> str:
    text = (text or "").strip()
    if text.startswith("```"):
        text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text)).strip()
    return text


def parse_json_response(text: Optional[str]) -> Any:
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except ValueError as exc:
        raise AIResponseParseError(f"Could not parse the AI response: {exc}", raw_text=cleaned) from exc


def parse_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Like :func:`parse_json_response`, but anything other than a JSON object is a parse failure."""
    parsed = parse_json_response(text)
    if not isinstance(parsed, dict):
        raise AIResponseParseError(
            f"Expected a JSON object, got {type(parsed).__name__}", raw_text=strip_code_fence(text)
        )
    return parsed


def dedupe_sources(sources: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One entry per URI, the first one seen, in first-seen order."""
    seen: Dict[str, Dict[str, Any]] = {}
    for source in sources:
        uri = source.get("uri")
        if uri and uri not in seen:
            seen[uri] = {"uri": uri, "title": source.get("title") or uri}
    return list(seen.values())


@dataclass
class Attachment:
    data: bytes
    mime_type: str
    file_name: str = "attachment"

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    def to_part(self) -> Dict[str, Any]:
        if self.mime_type.startswith("image/"):
            return {"type": "image_url", "image_url": {"url": self.data_url}}
        return {"type": "file", "file": {"filename": self.file_name, "file_data": self.data_url}}


@dataclass
class AIResponse:
    text: str
    sources: List[Dict[str, Any]] = field(default_factory=list)

    def json(self) -> Any:
        return parse_json_response(self.text)

    def json_object(self) -> Dict[str, Any]:
        return parse_json_object(self.text)


def _sources_from_message(message: Any) -> List[Dict[str, Any]]:
    sources = []
    for annotation in getattr(message, "annotations", None) or []:
        citation = getattr(annotation, "url_citation", None)
        if citation is not None and getattr(citation, "url", None):
            sources.append({"uri": citation.url, "title": getattr(citation, "title", None)})
    return dedupe_sources(sources)


class AIClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Any = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        online_check: Optional[Callable[[Settings], bool]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._sleep = sleep
        self._online_check = online_check

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY is not set; AI features are unavailable.")
            from openai import OpenAI

            self._client = OpenAI(api_key=self.settings.openai_api_key)
        return self._client

    def ensure_available(self) -> None:
        ensure_available(self.settings, self._online_check)

    def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None,
        schema_name: str = "result",
        web_search: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> AIResponse:
        """Send ``messages`` and return the answer text with any web sources."""
        self.ensure_available()
        client = self.client
        kwargs: Dict[str, Any] = {"messages": messages}
        if web_search:
            kwargs["model"] = self.settings.ai_search_model
            kwargs["web_search_options"] = {}
        else:
            kwargs["model"] = model or self.settings.ai_model
        if schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema},
            }

        def call() -> AIResponse:
            resp = client.chat.completions.create(**kwargs)
            if cancel is not None and cancel.is_set():
                raise AICancelledError("AI request was cancelled.")
            message = resp.choices[0].message
            return AIResponse(text=message.content or "", sources=_sources_from_message(message))

        return with_retry(
            call,
            retries=self.settings.ai_max_retries,
            delay=self.settings.ai_retry_delay,
            cancel=cancel,
            sleep=self._sleep,
        )

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        attachments: Sequence[Attachment] = (),
        **options: Any,
    ) -> AIResponse:
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        if attachments:
            content: Any = [{"type": "text", "text": prompt}] + [a.to_part() for a in attachments]
        else:
            content = prompt
        messages.append({"role": "user", "content": content})
        return self.complete(messages, **options)

    def generate_json(self, prompt: str, **options: Any) -> Any:
        return self.generate(prompt, **options).json()

    def generate_object(self, prompt: str, **options: Any) -> Dict[str, Any]:
        return self.generate(prompt, **options).json_object()

    def start_chat(self, system: str, **options: Any) -> "ChatSession":
        self.ensure_available()
        return ChatSession(self, system, **options)


class ChatSession:
    """A multi-turn conversation; the history is kept client-side."""

    def __init__(self, client: AIClient, system: str, **options: Any) -> None:
        self.client = client
        self.options = options
        self.history: List[Dict[str, Any]] = [{"role": "system", "content": system}]

    def send(self, message: str, cancel: Optional[threading.Event] = None) -> AIResponse:
        messages = self.history + [{"role": "user", "content": message}]
        response = self.client.complete(messages, cancel=cancel, **self.options)
        self.history = messages + [{"role": "assistant", "content": response.text}]
        return response
