"""Key layout and value encoding of the token VM state."""

from __future__ import annotations

import struct
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Optional, Protocol

ID_LEN = 32
PUBLIC_KEY_LEN = 32
UINT64_LEN = 8
UINT16_LEN = 2
MAX_UINT64 = (1 << 64) - 1
MAX_UINT16 = (1 << 16) - 1

EMPTY_PUBLIC_KEY = bytes(PUBLIC_KEY_LEN)

# Metadata
#   0x0 [txID] -> timestamp|success|units
# State
#   0x0 [owner|asset] -> balance
#   0x1 [asset] -> metadataLen|metadata|supply|owner|warp
#   0x2 [txID] -> in|inTick|out|outTick|remaining|owner
#   0x3 [asset|destination] -> amount
#   0x4 -> height
#   0x5 [sourceChainID|msgID] incoming warp
#   0x6 [txID] outgoing warp
TX_PREFIX = 0x0
BALANCE_PREFIX = 0x0
ASSET_PREFIX = 0x1
ORDER_PREFIX = 0x2
LOAN_PREFIX = 0x3
HEIGHT_PREFIX = 0x4
INCOMING_WARP_PREFIX = 0x5
OUTGOING_WARP_PREFIX = 0x6

_FAILURE_BYTE = 0x0
_SUCCESS_BYTE = 0x1
_HEIGHT_KEY = bytes([HEIGHT_PREFIX])

_U64 = struct.Struct(">Q")
_I64 = struct.Struct(">q")
_U16 = struct.Struct(">H")


class InvalidBalanceError(ValueError):
    """A balance or loan update would overflow or go negative."""


class NotFoundError(KeyError):
    """The requested key is not present in the database."""


class Database(Protocol):
    def get_value(self, key: bytes) -> bytes: ...

    def insert(self, key: bytes, value: bytes) -> None: ...

    def remove(self, key: bytes) -> None: ...


ReadState = Callable[[Sequence[bytes]], "list[Optional[bytes]]"]


class MemoryDatabase:
    """A dictionary-backed key/value store."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}

    def get_value(self, key: bytes) -> bytes:
        try:
            return self._data[bytes(key)]
        except KeyError:
            raise NotFoundError(bytes(key)) from None

    def insert(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def read_state(self, keys: Sequence[bytes]) -> list[Optional[bytes]]:
        """Return the value stored under each key, or None where it is missing."""
        return [self._data.get(bytes(key)) for key in keys]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetInfo:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderInfo:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _fixed(value: bytes, length: int, name: str) -> bytes:
    value = bytes(value)
    if len(value) != length:
        raise ValueError(f"{name} must be {length} bytes, got {len(value)}")
    return value


def _uint64(value: int, name: str) -> bytes:
    if not 0 <= value <= MAX_UINT64:
        raise ValueError(f"{name} {value} is out of uint64 range")
    return _U64.pack(value)


def _lookup(db: Database, key: bytes) -> Optional[bytes]:
    try:
        return db.get_value(key)
    except NotFoundError:
        return None


def prefix_tx_key(tx_id: bytes) -> bytes:
    return bytes([TX_PREFIX]) + _fixed(tx_id, ID_LEN, "tx id")


def store_transaction(db: Database, tx_id: bytes, timestamp: int, success: bool, units: int) -> None:
    value = (
        _I64.pack(timestamp)
        + bytes([_SUCCESS_BYTE if success else _FAILURE_BYTE])
        + _uint64(units, "units")
    )
    db.insert(prefix_tx_key(tx_id), value)


def get_transaction(db: Database, tx_id: bytes) -> Optional[TransactionRecord]:
    value = _lookup(db, prefix_tx_key(tx_id))
    if value is None:
        return None
    (timestamp,) = _I64.unpack_from(value, 0)
    success = value[UINT64_LEN] != _FAILURE_BYTE
    (units,) = _U64.unpack_from(value, UINT64_LEN + 1)
    return TransactionRecord(timestamp, success, units)


def prefix_balance_key(public_key: bytes, asset: bytes) -> bytes:
    return (
        bytes([BALANCE_PREFIX])
        + _fixed(public_key, PUBLIC_KEY_LEN, "public key")
        + _fixed(asset, ID_LEN, "asset id")
    )


def _decode_amount(value: Optional[bytes]) -> int:
    if value is None:
        return 0
    return _U64.unpack_from(value, 0)[0]


def get_balance(db: Database, public_key: bytes, asset: bytes) -> int:
    """Return the balance, 0 where the account holds none of the asset."""
    return _decode_amount(_lookup(db, prefix_balance_key(public_key, asset)))


def get_balance_from_state(read_state: ReadState, public_key: bytes, asset: bytes) -> int:
    return _decode_amount(read_state([prefix_balance_key(public_key, asset)])[0])


def set_balance(db: Database, public_key: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(public_key, asset), _uint64(balance, "balance"))


def delete_balance(db: Database, public_key: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(public_key, asset))


def add_balance(db: Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_amount(_lookup(db, key))
    new_balance = balance + amount
    if new_balance > MAX_UINT64:
        raise InvalidBalanceError(
            f"could not add balance (asset={asset.hex()}, bal={balance}, "
            f"addr={public_key.hex()}, amount={amount})"
        )
    db.insert(key, _U64.pack(new_balance))


def sub_balance(db: Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_amount(_lookup(db, key))
    if amount > balance:
        raise InvalidBalanceError(
            f"could not subtract balance (asset={asset.hex()}, bal={balance}, "
            f"addr={public_key.hex()}, amount={amount})"
        )
    new_balance = balance - amount
    if new_balance == 0:
        db.remove(key)
    else:
        db.insert(key, _U64.pack(new_balance))


def prefix_asset_key(asset: bytes) -> bytes:
    return bytes([ASSET_PREFIX]) + _fixed(asset, ID_LEN, "asset id")


def _decode_asset(value: Optional[bytes]) -> Optional[AssetInfo]:
    if value is None:
        return None
    (metadata_len,) = _U16.unpack_from(value, 0)
    offset = UINT16_LEN + metadata_len
    metadata = bytes(value[UINT16_LEN:offset])
    (supply,) = _U64.unpack_from(value, offset)
    owner_start = offset + UINT64_LEN
    owner = bytes(value[owner_start : owner_start + PUBLIC_KEY_LEN])
    warp = value[owner_start + PUBLIC_KEY_LEN] == 0x1
    return AssetInfo(metadata, supply, owner, warp)


def get_asset_from_state(read_state: ReadState, asset: bytes) -> Optional[AssetInfo]:
    return _decode_asset(read_state([prefix_asset_key(asset)])[0])


def get_asset(db: Database, asset: bytes) -> Optional[AssetInfo]:
    return _decode_asset(_lookup(db, prefix_asset_key(asset)))


def set_asset(
    db: Database,
    asset: bytes,
    metadata: bytes,
    supply: int,
    owner: bytes,
    warp: bool,
) -> None:
    metadata = bytes(metadata)
    if len(metadata) > MAX_UINT16:
        raise ValueError(f"metadata of {len(metadata)} bytes exceeds {MAX_UINT16}")
    value = (
        _U16.pack(len(metadata))
        + metadata
        + _uint64(supply, "supply")
        + _fixed(owner, PUBLIC_KEY_LEN, "owner")
        + bytes([0x1 if warp else 0x0])
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


def prefix_order_key(tx_id: bytes) -> bytes:
    return bytes([ORDER_PREFIX]) + _fixed(tx_id, ID_LEN, "tx id")


def set_order(
    db: Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = (
        _fixed(in_asset, ID_LEN, "in asset")
        + _uint64(in_tick, "in tick")
        + _fixed(out_asset, ID_LEN, "out asset")
        + _uint64(out_tick, "out tick")
        + _uint64(supply, "supply")
        + _fixed(owner, PUBLIC_KEY_LEN, "owner")
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: Database, order: bytes) -> Optional[OrderInfo]:
    value = _lookup(db, prefix_order_key(order))
    if value is None:
        return None
    in_asset = bytes(value[:ID_LEN])
    (in_tick,) = _U64.unpack_from(value, ID_LEN)
    out_start = ID_LEN + UINT64_LEN
    out_asset = bytes(value[out_start : out_start + ID_LEN])
    (out_tick,) = _U64.unpack_from(value, ID_LEN * 2 + UINT64_LEN)
    (remaining,) = _U64.unpack_from(value, ID_LEN * 2 + UINT64_LEN * 2)
    owner_start = ID_LEN * 2 + UINT64_LEN * 3
    owner = bytes(value[owner_start : owner_start + PUBLIC_KEY_LEN])
    return OrderInfo(in_asset, in_tick, out_asset, out_tick, remaining, owner)


def delete_order(db: Database, order: bytes) -> None:
    db.remove(prefix_order_key(order))


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    return (
        bytes([LOAN_PREFIX])
        + _fixed(asset, ID_LEN, "asset id")
        + _fixed(destination, ID_LEN, "destination")
    )


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    return _decode_amount(read_state([prefix_loan_key(asset, destination)])[0])


def get_loan(db: Database, asset: bytes, destination: bytes) -> int:
    return _decode_amount(_lookup(db, prefix_loan_key(asset, destination)))


def set_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _uint64(amount, "loan"))


def add_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan + amount
    if new_loan > MAX_UINT64:
        raise InvalidBalanceError(
            f"could not add loan (asset={asset.hex()}, "
            f"destination={destination.hex()}, amount={amount})"
        )
    set_loan(db, asset, destination, new_loan)


def sub_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    if amount > loan:
        raise InvalidBalanceError(
            f"could not subtract loan (asset={asset.hex()}, "
            f"destination={destination.hex()}, amount={amount})"
        )
    new_loan = loan - amount
    if new_loan == 0:
        db.remove(prefix_loan_key(asset, destination))
    else:
        set_loan(db, asset, destination, new_loan)


def height_key() -> bytes:
    return _HEIGHT_KEY


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return (
        bytes([INCOMING_WARP_PREFIX])
        + _fixed(source_chain_id, ID_LEN, "source chain id")
        + _fixed(msg_id, ID_LEN, "message id")
    )


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([OUTGOING_WARP_PREFIX]) + _fixed(tx_id, ID_LEN, "tx id")