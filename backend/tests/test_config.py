"""Settings validation tests"""
import pytest
from pydantic import ValidationError

from tokenguard.core.config import Settings


class TestWarningThreshold:
    @pytest.mark.parametrize("value", [0, 100, 150, -5])
    def test_out_of_range_threshold_rejected(self, value):
        with pytest.raises(ValidationError):
            Settings(WARNING_THRESHOLD_PERCENT=value)

    @pytest.mark.parametrize("value", [1, 75, 99])
    def test_threshold_below_limit_accepted(self, value):
        assert Settings(WARNING_THRESHOLD_PERCENT=value).WARNING_THRESHOLD_PERCENT == value


class TestDefaultLimit:
    def test_non_positive_limit_rejected(self):
        with pytest.raises(ValidationError):
            Settings(DEFAULT_MONTHLY_TOKEN_LIMIT=0)
