"""Token and cost estimation tests"""
import pytest

from tokenguard.services.usage_estimator import (
    estimate_tokens, estimate_cost, extract_reported_tokens, DEFAULT_COST_PER_1K_TOKENS
)


class TestEstimateTokens:
    @pytest.mark.parametrize("text,expected", [
        ("", 0),
        (None, 0),
        ("a", 1),
        ("abcd", 1),
        ("abcde", 2),
        ("x" * 400, 100),
    ])
    def test_quarter_of_length_rounded_up(self, text, expected):
        assert estimate_tokens(text) == expected


class TestEstimateCost:
    def test_known_model_rate(self):
        assert estimate_cost(2000, "gpt-4") == pytest.approx(0.12)

    def test_unknown_model_uses_default_rate(self):
        assert estimate_cost(1000, "some-new-model") == pytest.approx(DEFAULT_COST_PER_1K_TOKENS)

    def test_no_model_uses_default_rate(self):
        assert estimate_cost(500) == pytest.approx(0.005)

    def test_zero_tokens_cost_nothing(self):
        assert estimate_cost(0, "claude-3-opus") == 0


class TestExtractReportedTokens:
    def test_openai_total_tokens(self):
        assert extract_reported_tokens({"usage": {"total_tokens": 42, "prompt_tokens": 40}}) == 42

    def test_prompt_plus_completion(self):
        assert extract_reported_tokens({"usage": {"prompt_tokens": 10, "completion_tokens": 5}}) == 15

    def test_anthropic_input_output(self):
        assert extract_reported_tokens({"usage": {"input_tokens": 12, "output_tokens": 30}}) == 42

    @pytest.mark.parametrize("payload", [
        None,
        "text",
        {"raw": "not json"},
        {"usage": "n/a"},
        {"usage": {"total_tokens": -1}},
        {"usage": {"total_tokens": True}},
        {"usage": {}},
    ])
    def test_missing_or_invalid_usage(self, payload):
        assert extract_reported_tokens(payload) is None
