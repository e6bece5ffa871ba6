"""
Teller domain errors.

Every error raised by the settlement engine derives from TellerError and
exposes to_dict() so callers (UI/API layers, CLI) can show structured detail
(expected vs actual, deficient denominations, current status) instead of a
bare message.

Recoverable by correcting input:
    FormatError, ChecksumError, ReconciliationError, LimitExceededError

Recoverable by operator intervention:
    InsufficientInventoryError, UnreachableChangeError, StateConflictError

Infrastructure (eligible for bounded retry):
    ProviderUnavailableError (plus SQLAlchemyError / TimeoutError)
"""

from __future__ import annotations

from typing import Any


class TellerError(Exception):
    """Base class for settlement engine errors."""

    code = "teller_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(TellerError, ValueError):
    """400-level input problem."""

    code = "validation_error"


class FormatError(ValidationError):
    """Reference or card number fails length/pattern rules."""

    code = "format_error"


class ChecksumError(ValidationError):
    """Reference fails its provider checksum or verification digit."""

    code = "checksum_error"

    def __init__(self, message: str, *, requires_digit: bool = False, **details: Any):
        super().__init__(message, requires_digit=requires_digit, **details)
        self.requires_digit = requires_digit


class ReconciliationError(ValidationError):
    """Denomination or cash totals do not match the expected amount."""

    code = "reconciliation_error"

    def __init__(self, message: str, *, expected: str | None = None, actual: str | None = None, **details: Any):
        super().__init__(message, expected=expected, actual=actual, **details)
        self.expected = expected
        self.actual = actual


class LimitExceededError(ValidationError):
    """Credit or daily cap would be breached."""

    code = "limit_exceeded"


class InsufficientInventoryError(TellerError):
    """
    Drawer lacks the denominations needed.

    deficiencies: list of {"denomination", "required", "available", "short"}
    """

    code = "insufficient_inventory"

    def __init__(self, message: str, *, deficiencies: list[dict] | None = None, **details: Any):
        deficiencies = deficiencies or []
        super().__init__(message, deficiencies=deficiencies, **details)
        self.deficiencies = deficiencies

    @property
    def deficient_denominations(self) -> list[str]:
        return [d["denomination"] for d in self.deficiencies]


class UnreachableChangeError(TellerError):
    """Amount cannot be represented by the denomination ladder at all."""

    code = "unreachable_change"


class StateConflictError(TellerError):
    """Transition attempted from an invalid status."""

    code = "state_conflict"

    def __init__(self, message: str, *, current_status: str | None = None, **details: Any):
        super().__init__(message, current_status=current_status, **details)
        self.current_status = current_status


class NotFoundError(TellerError, LookupError):
    """Unknown transaction, card, service or other entity."""

    code = "not_found"


class ProviderUnavailableError(TellerError):
    """External provider failed or timed out."""

    code = "provider_unavailable"
