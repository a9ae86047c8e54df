"""
Unit tests for the account name codec

Covers encoding, decoding, validation and the canonical cache key.
"""
import pytest

from core.exceptions import BadInputError
from core.name_codec import (
    AccountName,
    MAX_NAME_LENGTH,
    decode,
    encode,
    validate_account_name,
)


class TestEncodeDecode:
    """Test the reversible encoding"""

    def test_encode_uppercase_and_underscore(self):
        assert encode("Rally_Driver") == "0.rally.1.0.driver"

    def test_decode_encoded_name(self):
        assert decode("0.rally.1.0.driver") == "Rally_Driver"

    def test_plain_names_pass_through(self):
        assert encode("pg") == "pg"
        assert decode("pg") == "pg"

    @pytest.mark.parametrize(
        "name",
        ["dang", "Rally_Driver", "ABC", "a_b_c", "x1_Y2", "_", "0_", "0_a", "00A", "tptacek"],
    )
    def test_round_trip(self, name):
        """decode(encode(y)) == y and encode(decode(x)) == x"""
        encoded = encode(name)
        assert decode(encoded) == name
        assert encode(decode(encoded)) == encoded

    def test_literal_escape_text_is_ambiguous(self):
        """A name containing a literal "0." cannot be told apart from an escape"""
        assert decode("a0.b") == "aB"
        assert encode(decode("a0.b")) != "a0.b"


class TestValidation:
    """Test account name validation"""

    @pytest.mark.parametrize("raw", [None, ""])
    def test_missing(self, raw):
        with pytest.raises(BadInputError) as exc_info:
            validate_account_name(raw)
        assert exc_info.value.details["reason"] == "user param missing"

    def test_too_long(self):
        with pytest.raises(BadInputError):
            validate_account_name("a" * MAX_NAME_LENGTH)

    def test_longest_allowed(self):
        name = "a" * (MAX_NAME_LENGTH - 1)
        assert validate_account_name(name) == name

    def test_no_word_character(self):
        with pytest.raises(BadInputError) as exc_info:
            validate_account_name("...")
        assert "word character" in exc_info.value.details["reason"]

    @pytest.mark.parametrize("raw", ["bad name", "<script>", "a/b", "alice?x"])
    def test_invalid_characters(self, raw):
        with pytest.raises(BadInputError):
            validate_account_name(raw)

    @pytest.mark.parametrize("raw", ["alice", "Rally_Driver", "0.rally.1.0.driver", "a-b"])
    def test_valid(self, raw):
        assert validate_account_name(raw) == raw


class TestAccountName:
    """Test AccountName views"""

    def test_parse_decoded_form(self):
        account = AccountName.parse("Rally_Driver")
        assert account.raw == "Rally_Driver"
        assert account.decoded == "Rally_Driver"
        assert account.encoded == "0.rally.1.0.driver"
        assert account.needs_encoding is True

    def test_both_forms_share_a_key(self):
        """Case/underscore variants address one cache slot"""
        assert (
            AccountName.parse("Rally_Driver").key
            == AccountName.parse("0.rally.1.0.driver").key
        )

    def test_plain_name(self):
        account = AccountName.parse("alice")
        assert account.key == "alice"
        assert account.needs_encoding is False

    def test_parse_rejects_invalid(self):
        with pytest.raises(BadInputError):
            AccountName.parse("")
