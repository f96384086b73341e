"""Usage-percentage alert tiers reported alongside in-guest execution stats."""

from __future__ import annotations

from typing import NamedTuple

TIER_50 = 50.0
TIER_70 = 70.0
TIER_90 = 90.0


class UsageTiers(NamedTuple):
    ge50: bool
    ge70: bool
    ge90: bool

    def as_log_fields(self, prefix: str) -> dict[str, bool]:
        """e.g. ``{"cpu_ge50": True, "cpu_ge70": False, "cpu_ge90": False}``."""
        return {
            f"{prefix}_ge50": self.ge50,
            f"{prefix}_ge70": self.ge70,
            f"{prefix}_ge90": self.ge90,
        }


def classify_usage(pct: float) -> UsageTiers:
    """Map a usage percentage to cumulative tiers (inclusive lower bounds)."""
    return UsageTiers(pct >= TIER_50, pct >= TIER_70, pct >= TIER_90)
