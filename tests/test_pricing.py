"""
Tests for pricing calculations and the cost meter.
"""
from decimal import Decimal

import pytest

from ai_reply_stream.core.pricing import PRICING_TABLE, CostMeter, calculate_cost
from ai_reply_stream.core.token_counter import TokenUsage, estimate_tokens


class TestPricing:
    """Test pricing calculations."""

    def test_pricing_table_contains_expected_models(self):
        """Verify pricing table has expected models."""
        assert "gpt-4" in PRICING_TABLE.prices
        assert "gpt-3.5-turbo" in PRICING_TABLE.prices
        assert "gpt-4o-mini" in PRICING_TABLE.prices

    def test_calculate_cost_gpt4(self):
        """Test cost calculation for GPT-4."""
        usage = TokenUsage(prompt_tokens=1000, completion_tokens=500)
        cost = calculate_cost("gpt-4", usage)
        # 1000 * 0.03/1000 + 500 * 0.06/1000 = 0.03 + 0.03 = 0.06
        assert cost == Decimal("0.0600")

    def test_calculate_cost_rounds_up(self):
        """Sub-quantum costs round up, never down to zero."""
        usage = TokenUsage(prompt_tokens=1, completion_tokens=0)
        # 1 * 0.0005/1000 = 0.0000005
        assert calculate_cost("gpt-3.5-turbo", usage) == Decimal("0.0001")

    def test_zero_usage_costs_nothing(self):
        assert calculate_cost("gpt-4", TokenUsage(0, 0)) == Decimal("0")

    def test_unsupported_model(self):
        """Test error handling for unsupported model."""
        with pytest.raises(ValueError, match="Unsupported model"):
            calculate_cost("unsupported-model", TokenUsage(1, 1))


class TestTokenEstimate:

    def test_rounds_up_to_whole_tokens(self):
        assert estimate_tokens(0) == 0
        assert estimate_tokens(1) == 1
        assert estimate_tokens(4) == 1
        assert estimate_tokens(5) == 2

    def test_negative_counts_are_zero(self):
        assert estimate_tokens(-3) == 0


class TestCostMeter:
    """Test the running per-request estimate."""

    def test_starts_at_zero(self):
        meter = CostMeter("gpt-4")
        assert meter.value == Decimal("0")

    def test_unknown_model_rejected(self):
        with pytest.raises(ValueError, match="Unsupported model"):
            CostMeter("not-a-model")

    def test_prompt_charged_per_call(self):
        meter = CostMeter("gpt-4")
        meter.add_prompt("x" * 4000)
        meter.add_prompt("x" * 4000)
        assert meter.usage.prompt_tokens == 2000
        assert meter.value == Decimal("0.0600")

    def test_completion_estimated_from_characters(self):
        meter = CostMeter("gpt-4")
        for delta in ["ab", "cd", "e"]:
            meter.add_completion(delta)
        # 5 chars -> 2 tokens, not 3 separately rounded ones
        assert meter.usage.completion_tokens == 2

    def test_value_never_decreases(self):
        meter = CostMeter("gpt-4o-mini")
        previous = meter.value
        for delta in ["Hello", " ", "", "world, ", "this is a longer delta " * 10]:
            meter.add_completion(delta)
            current = meter.value
            assert current >= previous
            assert current >= 0
            previous = current
        assert previous > 0
