"""
Denomination ladders (face values in cents, largest first).

MXN:            1000, 500, 200, 100, 50, 20, 10, 5, 2, 1, 0.50
MXN_FRACTIONAL: MXN plus 0.20, 0.10, 0.05, 0.01

The greedy change strategy is exact for these ladders. A new profile must be
re-verified (or given a real coin-change search) before it is added here.
"""

from __future__ import annotations

from flask import current_app, has_app_context

from .errors import ValidationError
from .money import format_cents, to_cents

MXN = (100000, 50000, 20000, 10000, 5000, 2000, 1000, 500, 200, 100, 50)

DENOMINATION_PROFILES = {
    "MXN": MXN,
    "MXN_FRACTIONAL": MXN + (20, 10, 5, 1),
}

DEFAULT_PROFILE = "MXN"


def get_denominations(profile: str | None = None) -> tuple[int, ...]:
    """Ladder for profile; defaults to the app's CURRENCY_PROFILE when inside an app context."""
    if profile is None:
        profile = current_app.config.get("CURRENCY_PROFILE", DEFAULT_PROFILE) if has_app_context() else DEFAULT_PROFILE
    try:
        return DENOMINATION_PROFILES[profile.upper()]
    except KeyError:
        raise ValidationError(f"Unknown currency profile: {profile}")


def parse_denomination(value, denominations: tuple[int, ...] | None = None) -> int:
    """Face value (Decimal, str, int, float) -> cents; rejects values outside the ladder."""
    ladder = denominations or get_denominations()
    cents = to_cents(value, field="denomination")
    if cents not in ladder:
        raise ValidationError(
            f"Unknown denomination: {format_cents(cents)}",
            denomination=format_cents(cents),
        )
    return cents
