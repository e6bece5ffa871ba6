# Overview: Inventory-constrained change calculation; pure functions over the denomination ladder.

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from ..denominations import get_denominations, parse_denomination
from ..errors import InsufficientInventoryError, UnreachableChangeError, ValidationError
from ..money import format_cents, from_cents, to_cents


@dataclass(frozen=True)
class ChangeEntry:
    denomination_cents: int
    quantity: int

    @property
    def amount_cents(self) -> int:
        return self.denomination_cents * self.quantity

    @property
    def denomination(self) -> Decimal:
        return from_cents(self.denomination_cents)

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)

    def to_dict(self) -> dict:
        return {
            "denomination": format_cents(self.denomination_cents),
            "quantity": self.quantity,
            "amount": format_cents(self.amount_cents),
        }


def _normalize_quantity(quantity, denomination_cents: int):
    if isinstance(quantity, float) and math.isinf(quantity) and quantity > 0:
        return quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(
            f"Quantity for {format_cents(denomination_cents)} must be an integer",
            denomination=format_cents(denomination_cents),
        )
    if quantity < 0:
        raise ValidationError(
            f"Quantity for {format_cents(denomination_cents)} cannot be negative",
            denomination=format_cents(denomination_cents),
        )
    return quantity


def normalize_inventory(inventory: Mapping | None, denominations: tuple[int, ...]) -> dict:
    """{face value: quantity} -> {cents: quantity}; math.inf means unlimited."""
    normalized = {}
    for key, quantity in (inventory or {}).items():
        cents = parse_denomination(key, denominations)
        normalized[cents] = normalized.get(cents, 0) + _normalize_quantity(quantity, cents)
    return normalized


def _greedy(target_cents: int, inventory: dict, denominations: tuple[int, ...]) -> tuple[list[ChangeEntry], int]:
    remaining = target_cents
    entries = []
    for denom in sorted(denominations, reverse=True):
        if remaining <= 0:
            break
        use = int(min(remaining // denom, inventory.get(denom, 0)))
        if use > 0:
            entries.append(ChangeEntry(denomination_cents=denom, quantity=use))
            remaining -= denom * use
    return entries, remaining


def find_deficiencies(required: Mapping[int, int], available: Mapping[int, int]) -> list[dict]:
    """
    Compare required vs available quantities per denomination (both keyed by cents).

    Returns one dict per short denomination, largest first.
    """
    deficiencies = []
    for denom in sorted(required, reverse=True):
        need = required[denom]
        have = available.get(denom, 0)
        if need > have:
            deficiencies.append({
                "denomination": format_cents(denom),
                "required": need,
                "available": int(have),
                "short": int(need - have),
            })
    return deficiencies


def compute_change(target, inventory: Mapping | None, denominations: tuple[int, ...] | None = None) -> list[ChangeEntry]:
    """
    Greedy, largest-first breakdown of target constrained by inventory.

    - Exact or failure: never returns a partial breakdown.
    - UnreachableChangeError: the ladder cannot represent target at all.
    - InsufficientInventoryError: representable, but the inventory lacks the
      denominations the unconstrained breakdown needs (each one listed).
    """
    ladder = denominations or get_denominations()
    target_cents = to_cents(target, field="change")
    if target_cents < 0:
        raise ValidationError("Change amount cannot be negative")
    if target_cents == 0:
        return []

    available = normalize_inventory(inventory, ladder)
    entries, remaining = _greedy(target_cents, available, ladder)
    if remaining == 0:
        return entries

    unconstrained, unconstrained_remaining = _greedy(target_cents, {d: math.inf for d in ladder}, ladder)
    if unconstrained_remaining != 0:
        raise UnreachableChangeError(
            f"Change of {format_cents(target_cents)} cannot be represented with the available denominations",
            amount=format_cents(target_cents),
            remaining=format_cents(unconstrained_remaining),
        )

    required = {e.denomination_cents: e.quantity for e in unconstrained}
    raise InsufficientInventoryError(
        f"Insufficient drawer inventory to dispense change of {format_cents(target_cents)}",
        deficiencies=find_deficiencies(required, available),
        amount=format_cents(target_cents),
    )


def is_representable(amount, denominations: tuple[int, ...] | None = None) -> bool:
    """True when the ladder can reach amount exactly with unlimited inventory."""
    ladder = denominations or get_denominations()
    cents = to_cents(amount, field="amount")
    if cents < 0:
        return False
    _, remaining = _greedy(cents, {d: math.inf for d in ladder}, ladder)
    return remaining == 0


def total_cents(entries) -> int:
    return sum(e.amount_cents for e in entries)
