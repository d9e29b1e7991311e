"""
Core data types shared by the supervisor, tailer, history store and API.

ProcessStatus describes the supervised proxy, RequestEvent is one parsed
access-log entry and HistoryRecord is the persisted, bounded event history
with running totals.
"""

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_PROXY_PORT = 8317


def endpoint_for(port: int) -> str:
    """OpenAI-style base URL clients should use for a proxy on this port."""
    return f"http://localhost:{port}/v1"


@dataclass
class ProcessStatus:
    """Current state of the supervised proxy."""

    running: bool = False
    port: int = DEFAULT_PROXY_PORT
    endpoint: str = endpoint_for(DEFAULT_PROXY_PORT)

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "port": self.port,
            "endpoint": self.endpoint,
        }


@dataclass(frozen=True)
class RequestEvent:
    """A single proxied API request taken from the access log."""

    id: str
    timestamp: int  # ms since epoch
    provider: str
    model: str
    method: str
    path: str
    status: int
    duration_ms: int
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None

    @property
    def dedup_key(self) -> tuple[int, str]:
        return (self.timestamp, self.path)

    @property
    def total_tokens(self) -> int:
        return (self.tokens_in or 0) + (self.tokens_out or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "provider": self.provider,
            "model": self.model,
            "method": self.method,
            "path": self.path,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RequestEvent":
        return cls(
            id=str(data["id"]),
            timestamp=int(data["timestamp"]),
            provider=str(data.get("provider", "unknown")),
            model=str(data.get("model", "unknown")),
            method=str(data["method"]),
            path=str(data["path"]),
            status=int(data["status"]),
            duration_ms=int(data.get("duration_ms", 0)),
            tokens_in=data.get("tokens_in"),
            tokens_out=data.get("tokens_out"),
        )


@dataclass
class HistoryRecord:
    """Persisted request history with running totals."""

    events: list[RequestEvent] = field(default_factory=list)
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cost_estimate: float = 0.0

    def to_dict(self) -> dict:
        return {
            "events": [e.to_dict() for e in self.events],
            "total_tokens_in": self.total_tokens_in,
            "total_tokens_out": self.total_tokens_out,
            "total_cost_estimate": self.total_cost_estimate,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryRecord":
        return cls(
            events=[RequestEvent.from_dict(e) for e in data.get("events", [])],
            total_tokens_in=int(data.get("total_tokens_in", 0)),
            total_tokens_out=int(data.get("total_tokens_out", 0)),
            total_cost_estimate=float(data.get("total_cost_estimate", 0.0)),
        )
