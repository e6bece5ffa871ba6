import pytest

from teller.errors import ChecksumError, FormatError
from teller.services.checksum_service import (
    ERROR_CHECKSUM,
    ERROR_FORMAT,
    ERROR_MISSING_DIGIT,
    ERROR_UNKNOWN_PROVIDER,
    extract_reference_info,
    format_reference,
    gnm_check_digit,
    has_validation_rules,
    luhn_check_digit,
    luhn_is_valid,
    require_valid_card_number,
    require_valid_reference,
    validate_card_number,
    validate_reference,
)


DIESTEL_VALID = "123456789012345678901234567891"
DIESTEL_INVALID = "123456789012345678901234567890"


class TestCheckDigits:
    def test_telmex_digit_is_luhn_check_digit(self):
        assert luhn_check_digit("1234567890") == "3"

    @pytest.mark.parametrize("reference,digit", [
        ("1234567890123456", "3"),
        ("0000000000000006", "0"),  # remainder 1
        ("0000000000000000", "0"),  # remainder 0
        ("0000000000000011", "6"),
        ("0000000000000001", "9"),
    ])
    def test_gnm_weights_cycle_from_the_right(self, reference, digit):
        assert gnm_check_digit(reference) == digit

    def test_luhn_whole_string(self):
        assert luhn_is_valid(DIESTEL_VALID)
        assert not luhn_is_valid(DIESTEL_INVALID)
        assert not luhn_is_valid("")
        assert not luhn_is_valid("12a4")


class TestValidateReference:
    def test_cfe_length_only(self):
        assert validate_reference("CFE", "123456789012").valid
        result = validate_reference("CFE", "12345678901")
        assert not result.valid
        assert result.error_kind == ERROR_FORMAT
        assert "exactly 12 digits (got 11)" in result.reason

    def test_normalizes_spaces_hyphens_and_provider_code(self):
        result = validate_reference("telmex-001", "12-3456 7890", "3")
        assert result.valid
        assert result.reference == "1234567890"

    def test_length_checked_before_checksum(self):
        result = validate_reference("DIESTEL", "12345")
        assert result.error_kind == ERROR_FORMAT
        assert "exactly 30 digits" in result.reason

    def test_numeric_only(self):
        result = validate_reference("TELCEL", "12345abcde")
        assert not result.valid
        assert result.error_kind == ERROR_FORMAT

    def test_diestel_checksum(self):
        assert validate_reference("DIESTEL", DIESTEL_VALID).valid
        result = validate_reference("DIESTEL", DIESTEL_INVALID)
        assert not result.valid
        assert result.error_kind == ERROR_CHECKSUM

    def test_missing_digit_is_soft_failure(self):
        result = validate_reference("TELMEX", "1234567890")
        assert not result.valid
        assert result.requires_digit
        assert result.error_kind == ERROR_MISSING_DIGIT

    def test_wrong_digit_value_and_length(self):
        wrong = validate_reference("TELMEX", "1234567890", "4")
        assert wrong.error_kind == ERROR_CHECKSUM
        too_long = validate_reference("TELMEX", "1234567890", "33")
        assert too_long.error_kind == ERROR_FORMAT

    def test_gnm_digit(self):
        assert validate_reference("GNM", "1234567890123456", 3).valid
        assert not validate_reference("GNM", "1234567890123456", "2").valid

    def test_gnm_single_digit_mutation_detected_when_digit_is_not_zero(self):
        reference = "1234567890123456"
        digit = gnm_check_digit(reference)
        assert digit != "0"
        for pos in range(len(reference)):
            original = int(reference[pos])
            mutated = reference[:pos] + str((original + 1) % 10) + reference[pos + 1:]
            assert not validate_reference("GNM", mutated, digit).valid, pos

    def test_diestel_single_digit_mutation_detected(self):
        for pos in range(len(DIESTEL_VALID)):
            original = int(DIESTEL_VALID[pos])
            mutated = DIESTEL_VALID[:pos] + str((original + 1) % 10) + DIESTEL_VALID[pos + 1:]
            assert not validate_reference("DIESTEL", mutated).valid, pos

    def test_unknown_provider(self):
        result = validate_reference("ACME", "123")
        assert not result.valid
        assert result.error_kind == ERROR_UNKNOWN_PROVIDER
        assert "ACME" in result.reason
        assert not has_validation_rules("ACME")
        assert has_validation_rules("cfe")


class TestRequireValidReference:
    def test_returns_normalized_reference(self):
        assert require_valid_reference("CFE", "1234-5678-9012") == "123456789012"

    def test_format_error(self):
        with pytest.raises(FormatError):
            require_valid_reference("CFE", "123")

    def test_missing_digit_raises_checksum_error_with_flag(self):
        with pytest.raises(ChecksumError) as exc:
            require_valid_reference("TELMEX", "1234567890")
        assert exc.value.requires_digit is True
        assert exc.value.to_dict()["error"] == "checksum_error"

    def test_unknown_provider_is_format_error(self):
        with pytest.raises(FormatError):
            require_valid_reference("ACME", "123")


class TestCardNumbers:
    @pytest.mark.parametrize("number", ["4539578763621486", "4111111111111111", "4111 1111 1111 1111"])
    def test_valid(self, number):
        assert validate_card_number(number).valid

    def test_invalid_checksum(self):
        result = validate_card_number("4111111111111112")
        assert result.error_kind == ERROR_CHECKSUM
        with pytest.raises(ChecksumError):
            require_valid_card_number("4111111111111112")

    def test_invalid_length(self):
        with pytest.raises(FormatError):
            require_valid_card_number("411111111111")


class TestDisplayHelpers:
    def test_format_reference(self):
        assert format_reference("CFE", "123456789012") == "1234-5678-9012"
        assert format_reference("TELMEX", "1234567890") == "12-3456-7890"
        assert format_reference("DIESTEL", DIESTEL_VALID) == "123456-789012-345678-901234-567891"
        assert format_reference("TELCEL", "1234567890") == "1234567890"

    def test_extract_diestel_info(self):
        info = extract_reference_info("DIESTEL", DIESTEL_VALID)
        assert info == {
            "region": "123456",
            "account": "789012",
            "transaction_info": "345678901234567891",
        }
        assert extract_reference_info("CFE", "123456789012") == {}
