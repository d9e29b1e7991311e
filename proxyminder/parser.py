"""
Parse the proxy's GIN access-log lines into RequestEvent objects.

Lines look like:
    [GIN] 2025/12/04 - 20:51:48 | 200 |    6.656s |     ::1 | POST     "/api/provider/anthropic/v1/messages"

optionally followed by `| model=<name>`. Anything that is not a request to
one of the tracked API endpoints yields None. Parsing never raises on bad
input: unreadable timestamps fall back to the current time and unreadable
durations to zero.
"""

import re
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from .events import RequestEvent

ACCESS_LOG_MARKER = "[GIN]"

# Management, model listing and client telemetry routes
IGNORED_PATHS = (
    "/v0/management/",
    "/v1/models",
    "?uploadThread",
    "?getCreditsByRequestId",
    "?threadDisplayCostInfo",
    "/api/internal",
    "/api/telemetry",
    "/api/otel",
)

TRACKED_PATHS = (
    "/chat/completions",
    "/v1/messages",
    "/completions",
    "/v1beta",
    ":generateContent",
    ":streamGenerateContent",
)

LINE_PATTERN = re.compile(
    r"\[GIN\]\s+(?P<date>\d{4}/\d{2}/\d{2})\s+-\s+(?P<time>\d{2}:\d{2}:\d{2})\s+"
    r"\|\s+(?P<status>\d+)\s+"
    r"\|\s+(?P<duration>\S+)\s+"
    r"\|\s+\S+\s+"
    r"\|\s+(?P<method>\w+)\s+\"(?P<path>[^\"]+)\""
    r"(?:\s+\|\s+model=(?P<model>\S+))?"
)

# Suffix -> milliseconds per unit. Longer suffixes first so "ms" wins over "s".
DURATION_UNITS = (
    ("ms", Decimal(1)),
    ("µs", Decimal("0.001")),
    ("us", Decimal("0.001")),
    ("ns", Decimal("0.000001")),
    ("s", Decimal(1000)),
)

# Provider segment in Amp-style routes: /api/provider/{name}/...
PROVIDER_ALIASES = {
    "anthropic": "claude",
    "openai": "openai",
    "google": "gemini",
}

PROVIDER_BY_MODEL: list[tuple[Callable[[str], bool], str]] = [
    (lambda m: any(k in m for k in ("claude", "sonnet", "opus", "haiku")), "claude"),
    (lambda m: "gpt" in m or "codex" in m or m.startswith(("o1", "o3")), "openai"),
    (lambda m: "gemini" in m, "gemini"),
    (lambda m: "qwen" in m, "qwen"),
    (lambda m: "deepseek" in m, "deepseek"),
    (lambda m: "glm" in m, "zhipu"),
    (lambda m: "antigravity" in m, "antigravity"),
]

PROVIDER_BY_ENDPOINT: list[tuple[Callable[[str], bool], str]] = [
    (lambda p: "/messages" in p, "claude"),
    (lambda p: "/chat/completions" in p, "openai-compat"),
    (lambda p: "/v1beta" in p or ":generateContent" in p or ":streamGenerateContent" in p, "gemini"),
]

UNKNOWN = "unknown"


def is_trackable(line: str) -> bool:
    """Check whether a raw line is an access-log entry for a tracked API call."""
    if ACCESS_LOG_MARKER not in line:
        return False
    if any(ignored in line for ignored in IGNORED_PATHS):
        return False
    return any(tracked in line for tracked in TRACKED_PATHS)


def parse_duration(token: str) -> int:
    """Convert a GIN duration like "6.656s" or "65ms" to whole milliseconds."""
    for suffix, scale in DURATION_UNITS:
        if token.endswith(suffix):
            try:
                return max(int(Decimal(token[: -len(suffix)]) * scale), 0)
            except (InvalidOperation, ValueError, OverflowError):
                return 0
    return 0


def parse_timestamp(date: str, clock: str) -> int:
    """Combine "YYYY/MM/DD" and "HH:MM:SS" in local time into ms since epoch."""
    try:
        parsed = datetime.strptime(f"{date} {clock}", "%Y/%m/%d %H:%M:%S")
        return int(parsed.timestamp() * 1000)
    except (ValueError, OverflowError, OSError):
        return int(time.time() * 1000)


def extract_model_from_path(path: str) -> Optional[str]:
    """Pull the model out of Gemini-style paths: .../models/{model}:action"""
    idx = path.find("/models/")
    if idx == -1:
        return None
    rest = path[idx + len("/models/"):]
    model = re.split(r"[:/?]", rest, maxsplit=1)[0]
    return model or None


def provider_from_path(path: str) -> Optional[str]:
    """Return the provider named by an /api/provider/{name}/ segment, if any."""
    parts = path.split("?", 1)[0].split("/")
    for i, part in enumerate(parts[:-1]):
        if part == "provider" and i > 0 and parts[i - 1] == "api" and parts[i + 1]:
            name = parts[i + 1]
            return PROVIDER_ALIASES.get(name, name)
    return None


def provider_from_model(model: str) -> Optional[str]:
    name = model.lower()
    for matches, provider in PROVIDER_BY_MODEL:
        if matches(name):
            return provider
    return None


def provider_from_endpoint(path: str) -> Optional[str]:
    for matches, provider in PROVIDER_BY_ENDPOINT:
        if matches(path):
            return provider
    return None


def resolve_model(explicit: Optional[str], path: str) -> str:
    return explicit or extract_model_from_path(path) or UNKNOWN


def resolve_provider(path: str, model: str) -> str:
    return (
        provider_from_path(path)
        or provider_from_model(model)
        or provider_from_endpoint(path)
        or UNKNOWN
    )


def parse_line(line: str, counter: int) -> Optional[RequestEvent]:
    """
    Parse one access-log line.

    Args:
        line: Raw text line from the proxy log.
        counter: Process-local sequence number used to build the event id.

    Returns:
        The parsed RequestEvent, or None if the line is not a tracked request.
    """
    if not is_trackable(line):
        return None

    match = LINE_PATTERN.search(line)
    if not match:
        return None

    path = match.group("path")
    timestamp = parse_timestamp(match.group("date"), match.group("time"))
    model = resolve_model(match.group("model"), path)

    return RequestEvent(
        id=f"req_{timestamp}_{counter}",
        timestamp=timestamp,
        provider=resolve_provider(path, model),
        model=model,
        method=match.group("method"),
        path=path,
        status=int(match.group("status")),
        duration_ms=parse_duration(match.group("duration")),
    )
