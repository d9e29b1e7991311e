"""Tests for GIN access-log parsing."""

import time

import pytest

from proxyminder.parser import (
    extract_model_from_path,
    parse_duration,
    parse_line,
    parse_timestamp,
    provider_from_path,
    resolve_provider,
)

CLAUDE_LINE = '[GIN] 2025/12/04 - 20:51:48 | 200 | 6.656s | ::1 | POST "/api/provider/anthropic/v1/messages"'


def test_parses_amp_claude_request():
    event = parse_line(CLAUDE_LINE, 7)

    assert event is not None
    assert event.provider == "claude"
    assert event.method == "POST"
    assert event.status == 200
    assert event.duration_ms == 6656
    assert event.path == "/api/provider/anthropic/v1/messages"
    assert event.model == "unknown"
    assert event.tokens_in is None
    assert event.tokens_out is None


def test_id_combines_timestamp_and_counter():
    event = parse_line(CLAUDE_LINE, 42)
    assert event.timestamp == parse_timestamp("2025/12/04", "20:51:48")
    assert event.id == f"req_{event.timestamp}_42"


def test_handles_gin_column_padding():
    line = '[GIN] 2025/12/04 - 09:01:02 | 429 |      65ms |       127.0.0.1 | POST     "/v1/chat/completions"'
    event = parse_line(line, 0)
    assert event.status == 429
    assert event.duration_ms == 65
    assert event.method == "POST"
    assert event.path == "/v1/chat/completions"


def test_echoes_captured_fields():
    line = '[GIN] 2025/01/31 - 23:59:59 | 503 | 1.2s | 10.0.0.2 | PUT "/v1beta/models/gemini-2.5-pro:generateContent"'
    event = parse_line(line, 1)
    assert (event.status, event.method, event.path) == (503, "PUT", "/v1beta/models/gemini-2.5-pro:generateContent")


def test_explicit_model_token_wins():
    line = '[GIN] 2025/12/04 - 20:51:48 | 200 | 1s | ::1 | POST "/v1/chat/completions" | model=gpt-4o-mini'
    event = parse_line(line, 0)
    assert event.model == "gpt-4o-mini"
    assert event.provider == "openai"


def test_model_from_gemini_path():
    line = (
        '[GIN] 2025/12/04 - 20:51:48 | 200 | 3.1s | ::1 | POST '
        '"/api/provider/google/v1beta1/publishers/google/models/gemini-2.5-pro:streamGenerateContent"'
    )
    event = parse_line(line, 0)
    assert event.model == "gemini-2.5-pro"
    assert event.provider == "gemini"


@pytest.mark.parametrize(
    "path",
    [
        "/v0/management/usage",
        "/v1/models",
        "/api/internal?uploadThread",
        "/api/telemetry/v1/chat/completions",
        "/api/otel/v1/messages",
        "/v1/messages?getCreditsByRequestId",
    ],
)
def test_denylisted_paths_are_ignored(path):
    line = f'[GIN] 2025/12/04 - 20:51:48 | 200 | 10ms | ::1 | POST "{path}"'
    assert parse_line(line, 0) is None


@pytest.mark.parametrize(
    "line",
    [
        "",
        "plain text",
        'INFO 2025/12/04 - 20:51:48 | 200 | 10ms | ::1 | POST "/v1/messages"',
        '[GIN] 2025/12/04 - 20:51:48 | 200 | 10ms | ::1 | GET "/healthz"',
        "[GIN] garbage /v1/messages",
    ],
)
def test_non_events_return_none(line):
    assert parse_line(line, 0) is None


@pytest.mark.parametrize(
    "token,expected",
    [
        ("6.656s", 6656),
        ("65ms", 65),
        ("1.5ms", 1),
        ("0s", 0),
        ("250.5µs", 0),
        ("12us", 0),
        ("abc", 0),
        ("xs", 0),
        ("1m2.5s", 0),
        ("NaNs", 0),
        ("", 0),
    ],
)
def test_parse_duration(token, expected):
    assert parse_duration(token) == expected


def test_bad_timestamp_falls_back_to_now():
    before = int(time.time() * 1000)
    ts = parse_timestamp("2025/13/45", "99:99:99")
    after = int(time.time() * 1000)
    assert before <= ts <= after


def test_unparseable_date_still_yields_event():
    line = '[GIN] 2025/13/45 - 25:61:61 | 200 | 10ms | ::1 | POST "/v1/messages"'
    before = int(time.time() * 1000)
    event = parse_line(line, 0)
    assert event is not None
    assert event.timestamp >= before


def test_extract_model_from_path():
    assert extract_model_from_path("/v1beta/models/gemini-2.0-flash:generateContent") == "gemini-2.0-flash"
    assert extract_model_from_path("/v1/models/") is None
    assert extract_model_from_path("/v1/messages") is None


def test_provider_from_path_aliases():
    assert provider_from_path("/api/provider/anthropic/v1/messages") == "claude"
    assert provider_from_path("/api/provider/google/v1beta/x") == "gemini"
    assert provider_from_path("/api/provider/openai/v1/chat/completions") == "openai"
    assert provider_from_path("/api/provider/qwen/v1/chat/completions") == "qwen"
    assert provider_from_path("/v1/messages") is None


def test_provider_resolution_order():
    # Path segment beats model keywords
    assert resolve_provider("/api/provider/anthropic/v1/messages", "gpt-4o") == "claude"
    # Model keywords beat endpoint shape
    assert resolve_provider("/v1/chat/completions", "claude-sonnet-4") == "claude"
    assert resolve_provider("/v1/chat/completions", "deepseek-chat") == "deepseek"
    assert resolve_provider("/v1/chat/completions", "glm-4.6") == "zhipu"
    assert resolve_provider("/v1/chat/completions", "o3-mini") == "openai"
    # Endpoint shape when nothing else is known
    assert resolve_provider("/v1/chat/completions", "unknown") == "openai-compat"
    assert resolve_provider("/v1/messages", "unknown") == "claude"
    assert resolve_provider("/v1/completions", "unknown") == "unknown"
