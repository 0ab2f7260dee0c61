"""
Tests for the AI client: availability gate, retry/backoff, cancellation and
response normalisation.  The OpenAI client is replaced by ``DummyOpenAI``
from conftest, so no request leaves the process.
"""

import threading

import pytest

from printshop_erp.ai_client import (
    AIClient,
    Attachment,
    dedupe_sources,
    ensure_available,
    parse_json_response,
    strip_code_fence,
    with_retry,
)
from printshop_erp.config import Settings
from printshop_erp.errors import (
    AICancelledError,
    AIDisabledError,
    AIResponseParseError,
    AIUnavailableError,
    ConfigurationError,
)


def test_retries_twice_with_doubling_delay(ai_client, openai_client, sleeps):
    openai_client.fail(RuntimeError("503")).fail(RuntimeError("503")).reply("ok")
    ai_client.settings = Settings(openai_api_key="k", ai_retry_delay=0.5)
    assert ai_client.generate("hello").text == "ok"
    assert len(openai_client.calls) == 3
    assert sleeps == [0.5, 1.0]


def test_last_error_propagates_after_retries(ai_client, openai_client):
    for _ in range(3):
        openai_client.fail(RuntimeError("boom"))
    with pytest.raises(RuntimeError, match="boom"):
        ai_client.generate("hello")
    assert len(openai_client.calls) == 3


def test_with_retry_does_not_retry_cancellation():
    calls = []

    def fn():
        calls.append(1)
        raise AICancelledError("stop")

    with pytest.raises(AICancelledError):
        with_retry(fn, retries=2, delay=0, sleep=lambda s: None)
    assert calls == [1]


def test_preset_cancel_event_makes_no_call(ai_client, openai_client):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(AICancelledError):
        ai_client.generate("hello", cancel=cancel)
    assert openai_client.calls == []


def test_response_after_cancellation_is_discarded(ai_client, openai_client):
    cancel = threading.Event()

    def reply_then_cancel():
        cancel.set()
        openai_client.reply("late answer")
        return openai_client.completions.responses.pop()

    openai_client.completions.responses.append(reply_then_cancel)
    with pytest.raises(AICancelledError):
        ai_client.generate("hello", cancel=cancel)
    assert len(openai_client.calls) == 1


def test_disabled_ai_makes_no_call(openai_client):
    client = AIClient(Settings(openai_api_key="k", ai_disabled=True), client=openai_client)
    with pytest.raises(AIDisabledError):
        client.generate("hello")
    assert openai_client.calls == []


def test_offline_makes_no_call(openai_client):
    client = AIClient(Settings(openai_api_key="k"), client=openai_client, online_check=lambda s: False)
    with pytest.raises(AIUnavailableError):
        client.generate("hello")
    assert openai_client.calls == []


def test_online_check_uses_configured_url(monkeypatch):
    import requests

    def fake_head(url, timeout):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(requests, "head", fake_head)
    with pytest.raises(AIUnavailableError):
        ensure_available(Settings(ai_online_check_url="https://example.com/ping"))
    # without a check URL the host is assumed online
    ensure_available(Settings())


def test_missing_api_key_is_a_configuration_error():
    client = AIClient(Settings(openai_api_key=None), online_check=lambda s: True)
    with pytest.raises(ConfigurationError):
        client.generate("hello")


def test_schema_goes_through_response_format(ai_client, openai_client):
    openai_client.reply('{"a": 1}')
    schema = {"type": "object", "properties": {"a": {"type": "integer"}}}
    assert ai_client.generate_json("hi", schema=schema, schema_name="thing") == {"a": 1}
    call = openai_client.calls[0]
    assert call["model"] == ai_client.settings.ai_model
    assert call["response_format"] == {"type": "json_schema", "json_schema": {"name": "thing", "schema": schema}}


def test_web_search_uses_search_model_and_collects_sources(ai_client, openai_client):
    openai_client.reply(
        "summary",
        sources=[("https://a.example", "A"), ("https://b.example", "B"), ("https://a.example", "A again")],
    )
    response = ai_client.generate("research", web_search=True)
    call = openai_client.calls[0]
    assert call["model"] == ai_client.settings.ai_search_model
    assert call["web_search_options"] == {}
    assert response.sources == [
        {"uri": "https://a.example", "title": "A"},
        {"uri": "https://b.example", "title": "B"},
    ]


def test_attachments_become_content_parts(ai_client, openai_client):
    openai_client.reply("{}")
    ai_client.generate(
        "read these",
        attachments=[Attachment(b"img", "image/png"), Attachment(b"%PDF", "application/pdf", "spec.pdf")],
    )
    content = openai_client.calls[0]["messages"][-1]["content"]
    assert content[0] == {"type": "text", "text": "read these"}
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
    assert content[2]["file"]["filename"] == "spec.pdf"
    assert content[2]["file"]["file_data"].startswith("data:application/pdf;base64,")


def test_chat_session_keeps_history(ai_client, openai_client):
    openai_client.reply("first").reply("second")
    chat = ai_client.start_chat("be brief")
    chat.send("one")
    chat.send("two")
    roles = [m["role"] for m in openai_client.calls[1]["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert chat.history[-1] == {"role": "assistant", "content": "second"}


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ('```\n{"a": 1}\n```', '{"a": 1}'),
        ('  {"a": 1}  ', '{"a": 1}'),
        (None, ""),
    ],
)
def test_strip_code_fence(raw, expected):
    assert strip_code_fence(raw) == expected


def test_parse_json_response_keeps_raw_text_on_failure():
    assert parse_json_response('```json\n[1, 2]\n```') == [1, 2]
    with pytest.raises(AIResponseParseError) as excinfo:
        parse_json_response("Sorry, I cannot help with that.")
    assert excinfo.value.raw_text == "Sorry, I cannot help with that."


def test_dedupe_sources_keeps_first_seen():
    sources = [
        {"uri": "u1", "title": "first"},
        {"uri": "u2", "title": "two"},
        {"uri": "u1", "title": "second"},
        {"uri": None, "title": "ignored"},
    ]
    assert dedupe_sources(sources) == [{"uri": "u1", "title": "first"}, {"uri": "u2", "title": "two"}]
