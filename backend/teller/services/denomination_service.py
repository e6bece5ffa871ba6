# Overview: Service-layer operations for the denomination ledger; drawer inventory and per-transaction cash entries.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..denominations import get_denominations, parse_denomination
from ..errors import InsufficientInventoryError, NotFoundError, ValidationError
from ..extensions import db
from ..models import DenominationEntry, DrawerBalance, Transaction
from ..money import format_cents, from_cents
from .change_service import ChangeEntry, find_deficiencies

"""
Denomination ledger invariants

- RECEIVED entries add to the operator's drawer, CHANGE entries subtract,
  PAYMENT entries are informational and never move inventory.
- A drawer quantity is never negative. Subtraction is one conditional
  UPDATE (quantity >= :q), so read-check-write is atomic per denomination.
- Entries are written once per (transaction, type, denomination) and never
  edited; reversal moves drawer inventory and is recorded in the audit trail.
- Nothing here commits. Callers own the unit of work.
"""

ENTRY_RECEIVED = "RECEIVED"
ENTRY_PAYMENT = "PAYMENT"
ENTRY_CHANGE = "CHANGE"
ENTRY_TYPES = (ENTRY_RECEIVED, ENTRY_PAYMENT, ENTRY_CHANGE)

OP_ADD = "add"
OP_SUBTRACT = "subtract"


@dataclass(frozen=True)
class DrawerLine:
    denomination: Decimal
    quantity: int
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "denomination": f"{self.denomination:.2f}",
            "quantity": self.quantity,
            "amount": f"{self.amount:.2f}",
        }


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _check_quantity(quantity, denomination_cents: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(
            f"Quantity for {format_cents(denomination_cents)} must be a whole number",
            denomination=format_cents(denomination_cents),
        )
    if quantity < 0:
        raise ValidationError(
            f"Quantity for {format_cents(denomination_cents)} cannot be negative",
            denomination=format_cents(denomination_cents),
        )
    return quantity


def normalize_entries(entries, denominations: tuple[int, ...] | None = None) -> dict[int, int]:
    """
    Accepts {face value: quantity}, [{"denomination", "quantity"}] or [ChangeEntry].

    Returns {cents: quantity}. Unknown denominations, negative or fractional
    quantities and duplicate denominations are rejected.
    """
    ladder = denominations or get_denominations()
    if entries is None:
        return {}

    if isinstance(entries, Mapping):
        pairs = list(entries.items())
    else:
        pairs = []
        for item in entries:
            if isinstance(item, ChangeEntry):
                pairs.append((from_cents(item.denomination_cents), item.quantity))
            elif isinstance(item, Mapping):
                if "denomination" not in item or "quantity" not in item:
                    raise ValidationError("Each entry needs a denomination and a quantity")
                pairs.append((item["denomination"], item["quantity"]))
            else:
                raise ValidationError("Unsupported denomination entry")

    normalized: dict[int, int] = {}
    for denomination, quantity in pairs:
        cents = parse_denomination(denomination, ladder)
        if cents in normalized:
            raise ValidationError(
                f"Duplicate denomination {format_cents(cents)}",
                denomination=format_cents(cents),
            )
        normalized[cents] = _check_quantity(quantity, cents)
    return normalized


def entries_total_cents(entries: Mapping[int, int]) -> int:
    return sum(denom * qty for denom, qty in entries.items())


# =============================================================================
# DRAWER
# =============================================================================

def _add_to_drawer(operator_id: str, denomination_cents: int, quantity: int) -> None:
    stmt = (
        update(DrawerBalance)
        .where(
            DrawerBalance.operator_id == operator_id,
            DrawerBalance.denomination_cents == denomination_cents,
        )
        .values(quantity=DrawerBalance.quantity + quantity)
    )
    if db.session.execute(stmt).rowcount:
        return

    try:
        with db.session.begin_nested():
            db.session.add(DrawerBalance(
                operator_id=operator_id,
                denomination_cents=denomination_cents,
                quantity=quantity,
            ))
    except IntegrityError:
        if not db.session.execute(stmt).rowcount:
            raise


def _subtract_from_drawer(operator_id: str, denomination_cents: int, quantity: int) -> None:
    stmt = (
        update(DrawerBalance)
        .where(
            DrawerBalance.operator_id == operator_id,
            DrawerBalance.denomination_cents == denomination_cents,
            DrawerBalance.quantity >= quantity,
        )
        .values(quantity=DrawerBalance.quantity - quantity)
    )
    if db.session.execute(stmt).rowcount:
        return

    available = get_inventory_cents(operator_id).get(denomination_cents, 0)
    raise InsufficientInventoryError(
        f"Insufficient {format_cents(denomination_cents)} in drawer for operator {operator_id}",
        deficiencies=find_deficiencies({denomination_cents: quantity}, {denomination_cents: available}),
        operator_id=operator_id,
    )


def _apply_drawer_delta(operator_id: str, denomination_cents: int, quantity: int, op: str) -> None:
    if quantity == 0:
        return
    if op == OP_ADD:
        _add_to_drawer(operator_id, denomination_cents, quantity)
    elif op == OP_SUBTRACT:
        _subtract_from_drawer(operator_id, denomination_cents, quantity)
    else:
        raise ValidationError(f"Unknown drawer operation: {op}")


def adjust_drawer(operator_id: str, denomination, quantity: int, op: str) -> DrawerLine:
    """
    Add to or subtract from one denomination of an operator's drawer.

    Subtraction raises InsufficientInventoryError (naming the denomination)
    instead of ever going negative.
    """
    if not operator_id:
        raise ValidationError("operator_id is required")
    cents = parse_denomination(denomination)
    _check_quantity(quantity, cents)
    _apply_drawer_delta(operator_id, cents, quantity, op)
    db.session.flush()

    current = get_inventory_cents(operator_id).get(cents, 0)
    return DrawerLine(
        denomination=from_cents(cents),
        quantity=current,
        amount=from_cents(cents * current),
    )


def get_inventory_cents(operator_id: str) -> dict[int, int]:
    rows = (
        db.session.query(DrawerBalance.denomination_cents, DrawerBalance.quantity)
        .filter(DrawerBalance.operator_id == operator_id)
        .all()
    )
    return {denom: qty for denom, qty in rows}


def get_drawer_inventory(operator_id: str) -> dict[Decimal, int]:
    """{face value: quantity}, directly usable by change_service.compute_change."""
    return {from_cents(denom): qty for denom, qty in get_inventory_cents(operator_id).items()}


def get_drawer_balance(operator_id: str) -> list[DrawerLine]:
    rows = (
        db.session.query(DrawerBalance)
        .filter(DrawerBalance.operator_id == operator_id)
        .order_by(DrawerBalance.denomination_cents.desc())
        .all()
    )
    return [
        DrawerLine(
            denomination=from_cents(row.denomination_cents),
            quantity=row.quantity,
            amount=from_cents(row.amount_cents),
        )
        for row in rows
    ]


def get_drawer_total(operator_id: str) -> Decimal:
    return from_cents(sum(d * q for d, q in get_inventory_cents(operator_id).items()))


def _check_sufficiency_cents(operator_id: str, required: Mapping[int, int]) -> list[dict]:
    return find_deficiencies(
        {d: q for d, q in required.items() if q > 0},
        get_inventory_cents(operator_id),
    )


def check_sufficiency(operator_id: str, required) -> list[dict]:
    """Deficiency list (empty when the drawer covers every required quantity)."""
    return _check_sufficiency_cents(operator_id, normalize_entries(required))


def _require_sufficiency(operator_id: str, required: Mapping[int, int], message: str) -> None:
    deficiencies = _check_sufficiency_cents(operator_id, required)
    if deficiencies:
        raise InsufficientInventoryError(message, deficiencies=deficiencies, operator_id=operator_id)


# =============================================================================
# TRANSACTION ENTRIES
# =============================================================================

def record_entries(
    transaction_id: int,
    entry_type: str,
    entries,
    *,
    operator_id: str | None = None,
) -> Decimal:
    """
    Persist a set of denomination entries for a transaction and move the drawer.

    Returns the total recorded. CHANGE entries check sufficiency first so the
    error lists every short denomination, then subtract atomically per
    denomination (a concurrent drain still fails cleanly).
    """
    return record_cents_entries(transaction_id, entry_type, normalize_entries(entries), operator_id=operator_id)


def record_cents_entries(
    transaction_id: int,
    entry_type: str,
    entries: Mapping[int, int],
    *,
    operator_id: str | None = None,
) -> Decimal:
    """record_entries for a breakdown already keyed by cents ({5000: 1} is one 50.00 note)."""
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"Unknown entry type: {entry_type}")

    txn = db.session.get(Transaction, transaction_id)
    if not txn:
        raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
    operator_id = operator_id or txn.operator_id

    ladder = get_denominations()
    normalized = {}
    for denom, quantity in entries.items():
        if denom not in ladder:
            raise ValidationError(f"Unknown denomination: {format_cents(denom)}", denomination=format_cents(denom))
        if _check_quantity(quantity, denom) > 0:
            normalized[denom] = quantity

    existing = {
        denom for (denom,) in db.session.query(DenominationEntry.denomination_cents).filter(
            DenominationEntry.transaction_id == transaction_id,
            DenominationEntry.entry_type == entry_type,
        )
    }
    already = sorted(set(normalized) & existing, reverse=True)
    if already:
        raise ValidationError(
            f"{entry_type} entries already recorded for transaction {transaction_id}: "
            + ", ".join(format_cents(d) for d in already),
            transaction_id=transaction_id,
        )

    if entry_type == ENTRY_CHANGE:
        _require_sufficiency(
            operator_id,
            normalized,
            f"Insufficient drawer inventory to dispense change for transaction {transaction_id}",
        )

    for denom in sorted(normalized, reverse=True):
        quantity = normalized[denom]
        db.session.add(DenominationEntry(
            transaction_id=transaction_id,
            operator_id=operator_id,
            entry_type=entry_type,
            denomination_cents=denom,
            quantity=quantity,
            amount_cents=denom * quantity,
        ))
        if entry_type == ENTRY_RECEIVED:
            _apply_drawer_delta(operator_id, denom, quantity, OP_ADD)
        elif entry_type == ENTRY_CHANGE:
            _apply_drawer_delta(operator_id, denom, quantity, OP_SUBTRACT)

    db.session.flush()
    return from_cents(entries_total_cents(normalized))


def _entries_by_type(transaction_id: int) -> dict[str, list[DenominationEntry]]:
    rows = (
        db.session.query(DenominationEntry)
        .filter(DenominationEntry.transaction_id == transaction_id)
        .order_by(DenominationEntry.entry_type, DenominationEntry.denomination_cents.desc())
        .all()
    )
    grouped: dict[str, list[DenominationEntry]] = {t: [] for t in ENTRY_TYPES}
    for row in rows:
        grouped.setdefault(row.entry_type, []).append(row)
    return grouped


def get_transaction_denominations(transaction_id: int) -> dict[str, list[dict]]:
    return {t: [e.to_dict() for e in rows] for t, rows in _entries_by_type(transaction_id).items()}


def net_cash_cents(transaction_id: int) -> int:
    """Received minus change for a transaction."""
    grouped = _entries_by_type(transaction_id)
    received = sum(e.amount_cents for e in grouped[ENTRY_RECEIVED])
    change = sum(e.amount_cents for e in grouped[ENTRY_CHANGE])
    return received - change


def reverse_transaction_entries(transaction: Transaction) -> dict:
    """
    Undo the drawer effects of a transaction's entries.

    Received cash leaves the drawer, dispensed change returns. The entries
    themselves stay as recorded. All-or-nothing: the sufficiency check runs
    before any update, and a later failure propagates so the caller's unit
    of work is rolled back.
    """
    grouped = _entries_by_type(transaction.id)
    received = grouped[ENTRY_RECEIVED]
    change = grouped[ENTRY_CHANGE]

    # Change goes back in before received cash comes out, so only the net is required
    by_operator: dict[str, dict[int, int]] = {}
    for entry in received:
        ops = by_operator.setdefault(entry.operator_id, {})
        ops[entry.denomination_cents] = ops.get(entry.denomination_cents, 0) + entry.quantity
    for entry in change:
        ops = by_operator.setdefault(entry.operator_id, {})
        ops[entry.denomination_cents] = ops.get(entry.denomination_cents, 0) - entry.quantity

    for operator_id, required in by_operator.items():
        _require_sufficiency(
            operator_id,
            {d: q for d, q in required.items() if q > 0},
            f"Drawer no longer holds the cash received by transaction {transaction.transaction_number}",
        )

    for entry in change:
        _apply_drawer_delta(entry.operator_id, entry.denomination_cents, entry.quantity, OP_ADD)
    for entry in received:
        _apply_drawer_delta(entry.operator_id, entry.denomination_cents, entry.quantity, OP_SUBTRACT)

    db.session.flush()
    return {
        "received_removed": format_cents(sum(e.amount_cents for e in received)),
        "change_returned": format_cents(sum(e.amount_cents for e in change)),
        "entries_reversed": len(received) + len(change),
    }
