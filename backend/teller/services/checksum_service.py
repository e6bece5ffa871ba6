# Overview: Provider reference and card number validation; pure functions, no database work.

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import ChecksumError, FormatError

"""
Reference validation rules (authoritative)

- References are normalized by stripping whitespace and hyphens.
- Exact length is checked before any checksum or verification-digit logic.
- Every current provider is numeric-only.
- A provider that needs a verification digit reports requires_digit=True
  when none is supplied; that is a soft failure, not a malformed reference.
- Each provider's algorithm is its own strategy; they are not interchangeable.
"""

ERROR_FORMAT = "format"
ERROR_CHECKSUM = "checksum"
ERROR_UNKNOWN_PROVIDER = "unknown_provider"
ERROR_MISSING_DIGIT = "missing_digit"

_STRIP_RE = re.compile(r"[\s-]")
_NUMERIC_RE = re.compile(r"^\d+$")

CARD_NUMBER_LENGTH = 16


# =============================================================================
# CHECKSUM ALGORITHMS
# =============================================================================

def _luhn_sum(digits: str, *, double_rightmost: bool) -> int:
    total = 0
    double = double_rightmost
    for ch in reversed(digits):
        d = int(ch)
        if double:
            d *= 2
            if d > 9:
                d -= 9
        total += d
        double = not double
    return total


def luhn_is_valid(digits: str) -> bool:
    """Luhn pass over the whole string, check digit included."""
    if not digits or not _NUMERIC_RE.match(digits):
        return False
    return _luhn_sum(digits, double_rightmost=False) % 10 == 0


def luhn_check_digit(digits: str) -> str:
    """
    Digit that makes digits + check_digit pass Luhn.

    Weights alternate x2/x1 starting with x2 on the rightmost payload digit;
    doubled values above 9 fold by subtracting 9.
    """
    return str((10 - _luhn_sum(digits, double_rightmost=True) % 10) % 10)


def gnm_check_digit(digits: str) -> str:
    """
    Weights 2,3,4,5,6,7 cycling from the rightmost digit, sum mod 11.

    Remainder 0 or 1 maps to "0"; otherwise 11 - remainder.
    """
    total = 0
    for i, ch in enumerate(reversed(digits)):
        total += int(ch) * (2 + i % 6)
    remainder = total % 11
    if remainder in (0, 1):
        return "0"
    return str(11 - remainder)


# =============================================================================
# PROVIDER RULES
# =============================================================================

@dataclass(frozen=True)
class ProviderRule:
    code: str
    length: int
    description: str
    checksum: Optional[Callable[[str], bool]] = None
    check_digit: Optional[Callable[[str], str]] = None
    digit_length: Optional[int] = None

    @property
    def requires_digit(self) -> bool:
        return self.check_digit is not None


PROVIDER_RULES: dict[str, ProviderRule] = {
    "CFE": ProviderRule(
        code="CFE", length=12,
        description="CFE reference must be 12 numeric digits",
    ),
    "TELMEX": ProviderRule(
        code="TELMEX", length=10,
        description="Telmex reference must be 10 numeric digits plus a verification digit",
        check_digit=luhn_check_digit, digit_length=1,
    ),
    "GNM": ProviderRule(
        code="GNM", length=16,
        description="GNM reference must be 16 numeric digits plus a verification digit",
        check_digit=gnm_check_digit, digit_length=1,
    ),
    "CABLEVISION": ProviderRule(
        code="CABLEVISION", length=7,
        description="Cablevision reference must be 7 numeric digits",
    ),
    "TELCEL": ProviderRule(
        code="TELCEL", length=10,
        description="Telcel reference must be 10 numeric digits",
    ),
    "DIESTEL": ProviderRule(
        code="DIESTEL", length=30,
        description="Diestel reference must be 30 numeric digits with valid checksum",
        checksum=luhn_is_valid,
    ),
}


@dataclass(frozen=True)
class ReferenceValidation:
    valid: bool
    requires_digit: bool = False
    reason: Optional[str] = None
    reference: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "requires_digit": self.requires_digit,
            "reason": self.reason,
            "reference": self.reference,
            "error_kind": self.error_kind,
        }


def normalize_reference(raw_reference: str | None) -> str:
    return _STRIP_RE.sub("", raw_reference or "")


def base_provider_code(provider_code: str | None) -> str:
    """'telmex-001' -> 'TELMEX'."""
    return (provider_code or "").strip().split("-")[0].upper()


def get_provider_rule(provider_code: str | None) -> Optional[ProviderRule]:
    return PROVIDER_RULES.get(base_provider_code(provider_code))


def has_validation_rules(provider_code: str | None) -> bool:
    return get_provider_rule(provider_code) is not None


# =============================================================================
# VALIDATION
# =============================================================================

def validate_reference(
    provider_code: str,
    raw_reference: str,
    verification_digit: str | int | None = None,
) -> ReferenceValidation:
    reference = normalize_reference(raw_reference)
    rule = get_provider_rule(provider_code)

    if rule is None:
        return ReferenceValidation(
            valid=False,
            reason=f"No validation rules defined for provider: {base_provider_code(provider_code)}",
            reference=reference,
            error_kind=ERROR_UNKNOWN_PROVIDER,
        )

    if len(reference) != rule.length:
        return ReferenceValidation(
            valid=False,
            reason=f"Reference must be exactly {rule.length} digits (got {len(reference)}). {rule.description}",
            reference=reference,
            error_kind=ERROR_FORMAT,
        )

    if not _NUMERIC_RE.match(reference):
        return ReferenceValidation(
            valid=False,
            reason=f"Reference format is invalid. {rule.description}",
            reference=reference,
            error_kind=ERROR_FORMAT,
        )

    if rule.checksum is not None and not rule.checksum(reference):
        return ReferenceValidation(
            valid=False,
            reason="Reference checksum validation failed. Please verify the reference number.",
            reference=reference,
            error_kind=ERROR_CHECKSUM,
        )

    if rule.requires_digit:
        digit = "" if verification_digit is None else str(verification_digit).strip()
        if not digit:
            return ReferenceValidation(
                valid=False,
                requires_digit=True,
                reason=f"{rule.code} requires a verification digit",
                reference=reference,
                error_kind=ERROR_MISSING_DIGIT,
            )
        if len(digit) != rule.digit_length or not _NUMERIC_RE.match(digit):
            return ReferenceValidation(
                valid=False,
                reason=f"Verification digit must be {rule.digit_length} numeric digit",
                reference=reference,
                error_kind=ERROR_FORMAT,
            )
        if digit != rule.check_digit(reference):
            return ReferenceValidation(
                valid=False,
                reason="Verification digit does not match the reference",
                reference=reference,
                error_kind=ERROR_CHECKSUM,
            )

    return ReferenceValidation(valid=True, reason=None, reference=reference)


def require_valid_reference(
    provider_code: str,
    raw_reference: str,
    verification_digit: str | int | None = None,
) -> str:
    """Validate or raise FormatError/ChecksumError; returns the normalized reference."""
    result = validate_reference(provider_code, raw_reference, verification_digit)
    if result.valid:
        return result.reference

    if result.error_kind in (ERROR_CHECKSUM, ERROR_MISSING_DIGIT):
        raise ChecksumError(
            result.reason,
            requires_digit=result.requires_digit,
            provider_code=base_provider_code(provider_code),
        )
    raise FormatError(result.reason, provider_code=base_provider_code(provider_code))


def validate_card_number(card_number: str) -> ReferenceValidation:
    number = normalize_reference(card_number)
    if len(number) != CARD_NUMBER_LENGTH or not _NUMERIC_RE.match(number):
        return ReferenceValidation(
            valid=False,
            reason=f"Card number must be {CARD_NUMBER_LENGTH} numeric digits",
            reference=number,
            error_kind=ERROR_FORMAT,
        )
    if not luhn_is_valid(number):
        return ReferenceValidation(
            valid=False,
            reason="Card number failed checksum validation",
            reference=number,
            error_kind=ERROR_CHECKSUM,
        )
    return ReferenceValidation(valid=True, reference=number)


def require_valid_card_number(card_number: str) -> str:
    result = validate_card_number(card_number)
    if result.valid:
        return result.reference
    if result.error_kind == ERROR_CHECKSUM:
        raise ChecksumError(result.reason)
    raise FormatError(result.reason)


# =============================================================================
# DISPLAY HELPERS
# =============================================================================

_DISPLAY_GROUPS = {
    "CFE": (4, 4, 4),
    "TELMEX": (2, 4, 4),
    "DIESTEL": (6, 6, 6, 6, 6),
}


def format_reference(provider_code: str, raw_reference: str) -> str:
    """CFE XXXX-XXXX-XXXX, TELMEX XX-XXXX-XXXX, DIESTEL 6-6-6-6-6; others as-is."""
    reference = normalize_reference(raw_reference)
    groups = _DISPLAY_GROUPS.get(base_provider_code(provider_code))
    if not groups or len(reference) != sum(groups) or not _NUMERIC_RE.match(reference):
        return reference

    parts = []
    start = 0
    for size in groups:
        parts.append(reference[start:start + size])
        start += size
    return "-".join(parts)


def extract_reference_info(provider_code: str, raw_reference: str) -> dict:
    """Embedded metadata; Diestel: [6 region][6 account][18 transaction info]."""
    reference = normalize_reference(raw_reference)
    if base_provider_code(provider_code) == "DIESTEL" and len(reference) == 30:
        return {
            "region": reference[0:6],
            "account": reference[6:12],
            "transaction_info": reference[12:30],
        }
    return {}
