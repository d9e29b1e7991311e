"""
Rough cost estimates for proxied requests.

Rates are USD per million tokens (input, output). The table is ordered:
the first matching entry wins, so more specific patterns come first.
"""

from typing import Callable

Rate = tuple[float, float]

DEFAULT_RATE: Rate = (1.0, 3.0)

RATE_TABLE: list[tuple[Callable[[str], bool], Rate]] = [
    # Claude
    (lambda m: "claude" in m and "opus" in m, (15.0, 75.0)),
    (lambda m: "claude" in m and "sonnet" in m, (3.0, 15.0)),
    (lambda m: "claude" in m and "haiku" in m, (0.25, 1.25)),
    # GPT, newest first
    (lambda m: "gpt-5" in m, (15.0, 45.0)),
    (lambda m: "gpt-4o" in m, (2.5, 10.0)),
    (lambda m: "gpt-4" in m, (10.0, 30.0)),
    (lambda m: "gpt-3.5" in m, (0.5, 1.5)),
    # Gemini
    (lambda m: "gemini" in m and "pro" in m, (1.25, 5.0)),
    (lambda m: "gemini" in m and "flash" in m, (0.075, 0.30)),
    (lambda m: "gemini-2" in m, (0.10, 0.40)),
    (lambda m: "qwen" in m, (0.50, 2.0)),
]


def rate_for(model: str) -> Rate:
    """Return the (input, output) rate for a model name."""
    name = model.lower()
    for matches, rate in RATE_TABLE:
        if matches(name):
            return rate
    return DEFAULT_RATE


def estimate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Estimate the USD cost of a request."""
    input_rate, output_rate = rate_for(model)
    return (tokens_in / 1_000_000) * input_rate + (tokens_out / 1_000_000) * output_rate
