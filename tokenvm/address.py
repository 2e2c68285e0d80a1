"""Bech32 encoding of public keys as human-readable addresses."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

PUBLIC_KEY_LEN = 32

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_INDEX = {char: index for index, char in enumerate(_CHARSET)}
_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_CHECKSUM_LEN = 6
_MAX_LENGTH = 90


class AddressError(ValueError):
    """An address could not be encoded or decoded."""


class IncorrectHrpError(AddressError):
    """The address carries a different human-readable part than expected."""


class InvalidAddressLengthError(AddressError):
    """The address does not decode to a public key of the right length."""


def _polymod(values: Iterable[int]) -> int:
    checksum = 1
    for value in values:
        top = checksum >> 25
        checksum = ((checksum & 0x1FFFFFF) << 5) ^ value
        for bit, generator in enumerate(_GENERATORS):
            if (top >> bit) & 1:
                checksum ^= generator
    return checksum


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: Sequence[int]) -> list[int]:
    polymod = _polymod([*_hrp_expand(hrp), *data, *([0] * _CHECKSUM_LEN)]) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(_CHECKSUM_LEN)]


def _convert_bits(data: Iterable[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise AddressError(f"invalid data value {value}")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & max_value)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or (acc << (to_bits - bits)) & max_value:
        raise AddressError("invalid padding in address data")
    return out


def _bech32_encode(hrp: str, data: Sequence[int]) -> str:
    hrp = hrp.lower()
    combined = [*data, *_create_checksum(hrp, data)]
    return hrp + "1" + "".join(_CHARSET[d] for d in combined)


def _bech32_decode(text: str) -> tuple[str, list[int]]:
    if len(text) > _MAX_LENGTH:
        raise AddressError(f"address too long: {len(text)} characters")
    if any(ord(c) < 33 or ord(c) > 126 for c in text):
        raise AddressError("address contains an invalid character")
    if text.lower() != text and text.upper() != text:
        raise AddressError("address uses mixed case")
    text = text.lower()
    separator = text.rfind("1")
    if separator < 1 or separator + _CHECKSUM_LEN + 1 > len(text):
        raise AddressError("address separator is missing or misplaced")
    hrp = text[:separator]
    try:
        data = [_CHARSET_INDEX[c] for c in text[separator + 1 :]]
    except KeyError as exc:
        raise AddressError(f"address contains an invalid character {exc.args[0]!r}") from None
    if _polymod([*_hrp_expand(hrp), *data]) != 1:
        raise AddressError("address checksum is invalid")
    return hrp, data[:-_CHECKSUM_LEN]


def address(hrp: str, public_key: bytes) -> str:
    """Render a public key as a bech32 address with the given prefix."""
    if len(public_key) != PUBLIC_KEY_LEN:
        raise InvalidAddressLengthError(
            f"public key must be {PUBLIC_KEY_LEN} bytes, got {len(public_key)}"
        )
    return _bech32_encode(hrp, _convert_bits(public_key, 8, 5, True))


def parse_address(hrp: str, text: str) -> bytes:
    """Decode a bech32 address into the public key it carries."""
    decoded_hrp, data = _bech32_decode(text)
    if decoded_hrp != hrp:
        raise IncorrectHrpError(f"expected prefix {hrp!r}, got {decoded_hrp!r}")
    public_key = bytes(_convert_bits(data, 5, 8, False))
    if len(public_key) != PUBLIC_KEY_LEN:
        raise InvalidAddressLengthError(
            f"address holds {len(public_key)} bytes, expected {PUBLIC_KEY_LEN}"
        )
    return public_key