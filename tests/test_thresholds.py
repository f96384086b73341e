"""Tests for usage tier classification."""

import pytest

from vmfleet.thresholds import UsageTiers, classify_usage


class TestClassifyUsage:
    @pytest.mark.parametrize(
        "pct, expected",
        [
            (95, (True, True, True)),
            (60, (True, False, False)),
            (20, (False, False, False)),
            (50, (True, False, False)),
            (70, (True, True, False)),
            (90, (True, True, True)),
            (49.99, (False, False, False)),
            (0, (False, False, False)),
        ],
    )
    def test_tiers(self, pct, expected):
        assert tuple(classify_usage(pct)) == expected

    def test_monotonic(self):
        for pct in range(0, 101):
            tiers = classify_usage(pct)
            if tiers.ge90:
                assert tiers.ge70
            if tiers.ge70:
                assert tiers.ge50

    def test_log_fields(self):
        assert UsageTiers(True, True, False).as_log_fields("mem") == {
            "mem_ge50": True,
            "mem_ge70": True,
            "mem_ge90": False,
        }
