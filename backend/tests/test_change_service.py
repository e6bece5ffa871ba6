import math
from decimal import Decimal

import pytest

from teller.denominations import DENOMINATION_PROFILES, MXN, parse_denomination
from teller.errors import InsufficientInventoryError, UnreachableChangeError, ValidationError
from teller.services.change_service import (
    compute_change,
    find_deficiencies,
    is_representable,
    total_cents,
)


def _pairs(entries):
    return [(e.denomination_cents, e.quantity) for e in entries]


UNLIMITED_SMALL = {"20": math.inf, "10": math.inf, "5": math.inf, "2": math.inf, "1": math.inf, "0.50": math.inf}


def test_change_of_74_50_without_fifties():
    entries = compute_change("74.50", UNLIMITED_SMALL, MXN)
    assert _pairs(entries) == [(2000, 3), (1000, 1), (200, 2), (50, 1)]
    assert total_cents(entries) == 7450


def test_unlimited_ladder_prefers_largest():
    inventory = {Decimal(d) / 100: math.inf for d in MXN}
    entries = compute_change(Decimal("74.50"), inventory, MXN)
    assert _pairs(entries) == [(5000, 1), (2000, 1), (200, 2), (50, 1)]


def test_idempotent():
    inventory = {"50": 1, "20": 5, "10": 2, "0.50": 4}
    first = compute_change("92.00", inventory, MXN)
    second = compute_change("92.00", inventory, MXN)
    assert first == second
    assert total_cents(first) == 9200


def test_respects_inventory():
    entries = compute_change("70", {"50": 1, "20": 0, "10": 2}, MXN)
    assert _pairs(entries) == [(5000, 1), (1000, 2)]


def test_zero_target_returns_empty():
    assert compute_change("0", {}, MXN) == []


def test_negative_target_rejected():
    with pytest.raises(ValidationError):
        compute_change("-1", {}, MXN)


def test_unreachable_amount():
    with pytest.raises(UnreachableChangeError):
        compute_change("0.25", {"0.50": 10}, MXN)
    assert not is_representable("0.25", MXN)
    assert is_representable("0.50", MXN)


def test_insufficient_inventory_lists_deficiencies():
    with pytest.raises(InsufficientInventoryError) as exc:
        compute_change("100", {"50": 1}, MXN)
    assert exc.value.deficiencies == [
        {"denomination": "100.00", "required": 1, "available": 0, "short": 1},
    ]
    assert exc.value.deficient_denominations == ["100.00"]


def test_never_returns_partial_breakdown():
    with pytest.raises(InsufficientInventoryError):
        compute_change("75", {"50": 1, "20": 1, "2": 1}, MXN)


def test_unknown_denomination_in_inventory():
    with pytest.raises(ValidationError) as exc:
        compute_change("10", {"3": 5}, MXN)
    assert "Unknown denomination: 3.00" in str(exc.value)


def test_fractional_profile():
    ladder = DENOMINATION_PROFILES["MXN_FRACTIONAL"]
    entries = compute_change("0.25", {"0.20": math.inf, "0.05": math.inf}, ladder)
    assert _pairs(entries) == [(20, 1), (5, 1)]


def test_find_deficiencies_largest_first():
    required = {100: 3, 10000: 1, 500: 2}
    available = {100: 1, 500: 2}
    assert find_deficiencies(required, available) == [
        {"denomination": "100.00", "required": 1, "available": 0, "short": 1},
        {"denomination": "1.00", "required": 3, "available": 1, "short": 2},
    ]


def test_parse_denomination():
    assert parse_denomination("0.5", MXN) == 50
    assert parse_denomination(Decimal("1000"), MXN) == 100000
    with pytest.raises(ValidationError):
        parse_denomination("0.20", MXN)
