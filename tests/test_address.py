import pytest

from tokenvm.address import (
    AddressError,
    IncorrectHrpError,
    InvalidAddressLengthError,
    address,
    parse_address,
)

KEY = bytes(range(32))


@pytest.mark.parametrize("key", [bytes(32), KEY, bytes([0xFF] * 32)])
def test_round_trip(key):
    encoded = address("token", key)
    assert parse_address("token", encoded) == key


def test_address_carries_prefix_and_separator():
    encoded = address("token", KEY)
    assert encoded.startswith("token1")
    assert encoded == encoded.lower()


def test_distinct_keys_give_distinct_addresses():
    assert address("token", KEY) != address("token", bytes(32))


def test_uppercase_address_is_accepted():
    encoded = address("token", KEY)
    assert parse_address("token", encoded.upper()) == KEY


def test_mixed_case_rejected():
    encoded = address("token", KEY)
    mixed = encoded[:-1] + encoded[-1].upper()
    with pytest.raises(AddressError):
        parse_address("token", mixed)


def test_wrong_prefix_rejected():
    encoded = address("other", KEY)
    with pytest.raises(IncorrectHrpError):
        parse_address("token", encoded)


def test_corrupted_checksum_rejected():
    encoded = address("token", KEY)
    last = encoded[-1]
    replacement = "q" if last != "q" else "p"
    with pytest.raises(AddressError) as info:
        parse_address("token", encoded[:-1] + replacement)
    assert not isinstance(info.value, (IncorrectHrpError, InvalidAddressLengthError))


def test_valid_bech32_with_empty_payload_has_wrong_length():
    with pytest.raises(InvalidAddressLengthError):
        parse_address("a", "A12UEL5L")


def test_invalid_character_rejected():
    with pytest.raises(AddressError):
        parse_address("x", "x1b4n0q5v")


def test_short_public_key_rejected():
    with pytest.raises(InvalidAddressLengthError):
        address("token", bytes(31))


def test_missing_separator_rejected():
    with pytest.raises(AddressError):
        parse_address("token", "tokenqqqqqqqqq")