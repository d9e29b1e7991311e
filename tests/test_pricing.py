"""Tests for request cost estimation."""

import pytest

from proxyminder.pricing import DEFAULT_RATE, estimate_cost, rate_for


@pytest.mark.parametrize(
    "model,rate",
    [
        ("claude-opus-4-5-20251101", (15.0, 75.0)),
        ("Claude-3-5-Sonnet", (3.0, 15.0)),
        ("claude-haiku-4.5", (0.25, 1.25)),
        ("gpt-5.1-codex", (15.0, 45.0)),
        ("gpt-4o-mini", (2.5, 10.0)),
        ("gpt-4-turbo", (10.0, 30.0)),
        ("gpt-3.5-turbo", (0.5, 1.5)),
        ("gemini-2.5-pro", (1.25, 5.0)),
        ("gemini-2.5-flash", (0.075, 0.30)),
        ("gemini-2.0-exp", (0.10, 0.40)),
        ("qwen3-coder", (0.50, 2.0)),
        ("unknown", DEFAULT_RATE),
    ],
)
def test_rate_table_order(model, rate):
    assert rate_for(model) == rate


def test_estimate_cost_per_million():
    # 1M in at $3 + 0.5M out at $15
    assert abs(estimate_cost("claude-sonnet-4", 1_000_000, 500_000) - 10.5) < 1e-9


def test_zero_tokens_cost_nothing():
    assert estimate_cost("claude-opus-4", 0, 0) == 0.0
