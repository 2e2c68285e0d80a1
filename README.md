# tokenvm

`tokenvm` holds the state model of a token ledger: native and custom
assets, account balances, standing orders, and loans that track how much
of an asset has been sent to another chain. It defines how every record
is laid out as key and value bytes, provides the read/modify/write
operations the ledger needs on top of any key-value store, encodes public
keys as bech32 addresses, and answers the ledger's read-only queries over
JSON-RPC with a matching client.

The package uses only the Python standard library and supports
Python 3.10 and later.

## Installation

```
pip install tokenvm
```

## Modules

- `tokenvm.storage`: key prefixes and value encodings for transactions,
  balances, assets, orders and loans, and `MemoryDatabase`, an in-memory
  key-value store that works with every function in the module.
- `tokenvm.address`: `address(hrp, public_key)` renders a 32-byte public
  key as a bech32 address, and `parse_address(hrp, text)` turns one back
  into the key.
- `tokenvm.rpc`: `JSONRPCServer` answers `genesis`, `tx`, `asset`,
  `balance`, `orders` and `loan` requests against a `Controller`.
  `JSONRPCClient` calls them and can wait for a balance or a transaction.
- `tokenvm.version`: the `Semantic` version type and `VERSION`
  (`str(VERSION)` is `"v0.0.1"`).

## Storage layout

All identifiers and public keys are 32 bytes. Integers are stored as
big-endian 64-bit values. The transaction timestamp is signed and every
other integer is unsigned.

| Record      | Key                                   | Value                                                     |
|-------------|---------------------------------------|-----------------------------------------------------------|
| transaction | `0x00` + tx id                        | timestamp, success byte, units                            |
| balance     | `0x00` + public key + asset id        | amount                                                    |
| asset       | `0x01` + asset id                     | metadata length (u16), metadata, supply, owner, warp byte |
| order       | `0x02` + tx id                        | in asset, in tick, out asset, out tick, remaining, owner  |
| loan        | `0x03` + asset id + destination chain | amount                                                    |

`height_key()` returns the single byte `0x04`.
`incoming_warp_key_prefix(source_chain_id, msg_id)` returns `0x05` + both
ids, and `outgoing_warp_key_prefix(tx_id)` returns `0x06` + the tx id.
Every `prefix_*_key` function builds the key for its record. Each one
raises `ValueError` if an id or key does not have the right length.

## Balances and loans

```python
from tokenvm.storage import (
    InvalidBalanceError,
    MemoryDatabase,
    add_balance,
    get_balance,
    sub_balance,
)

db = MemoryDatabase()
owner = bytes(32)
native = bytes(32)

add_balance(db, owner, native, 1_000)
sub_balance(db, owner, native, 400)
print(get_balance(db, owner, native))  # 600

try:
    sub_balance(db, owner, native, 10_000)
except InvalidBalanceError as exc:
    print(exc)
```

A balance that has never been written reads as `0`. When a subtraction
brings a balance to exactly zero, the record is removed rather than set to
zero. Adding past the 64-bit limit or subtracting below zero raises
`InvalidBalanceError` and leaves the stored value unchanged. Loans follow
the same rules through `add_loan`, `sub_loan`, `get_loan` and `set_loan`.
`set_balance` and `delete_balance` write and remove a balance directly.

## Assets, orders and transactions

- `set_asset` stores an asset's metadata, supply, owner and warp flag.
  `get_asset` reads the asset back as an `AssetInfo`.
- `set_order` and `get_order` do the same for standing orders, which are
  read back as `OrderInfo`.
- `store_transaction` and `get_transaction` record a transaction's
  timestamp, success and units, which are read back as a
  `TransactionRecord`.

Each getter returns `None` when the record does not exist.
`delete_asset` and `delete_order` remove their record.

The `*_from_state` variants take a batch read function instead of a
database: `get_balance_from_state`, `get_asset_from_state` and
`get_loan_from_state`. The batch read function receives a list of keys
and returns one value per key, or `None` for a missing key.
`MemoryDatabase.read_state` is such a function.

Any object with `get_value(key)`, `insert(key, value)` and
`remove(key)` can stand in for `MemoryDatabase`. Its `get_value` must
raise `tokenvm.storage.NotFoundError` for a missing key.

## Addresses

`address` and `parse_address` raise errors from `tokenvm.address`:

- `IncorrectHrpError` when the address carries a different prefix.
- `InvalidAddressLengthError` when the key is not 32 bytes.
- `AddressError`, the base class of both, for a bad checksum, character,
  length, case or padding.

## JSON-RPC

`JSONRPCServer(controller, hrp)` takes a controller that provides
`genesis()`, `get_transaction(tx_id)`, `get_asset_from_state(asset)`,
`get_balance_from_state(public_key, asset)`, `orders(pair, limit)` and
`get_loan_from_state(asset, destination)`.

`server.handle(request)` takes a decoded JSON-RPC request and returns the
response object. Methods are named `tokenvm.<method>`, and the namespace
can be changed with `namespace=`. On the wire:

- Ids are base58 strings with a 4-byte SHA-256 checksum.
- Asset metadata is base64.
- Asset owners are addresses under the server's `hrp`.
- `orders` asks the controller for at most 128 orders of a pair.

Any failure is returned as an error response with a code and a message.
An unknown transaction or asset gives the messages `tx not found` and
`asset not found`.

`JSONRPCClient(uri, chain_id)` posts requests to `uri` with its trailing
slash removed and `/tokenapi` appended. It uses `urllib` unless a
`transport=` callable is given. A transport takes the URL and the request
object and returns the response object. The client methods behave as
follows:

- Errors come back as `RPCError`, which carries a `code`.
- `tx` returns a `TransactionRecord` or `None`.
- `asset` returns an `AssetDetails` (whose owner is an address) or `None`.
- `balance` and `loan` return integers.
- `orders` returns the list of order objects.
- `genesis` is fetched once and then cached.
- `wait_for_balance` polls until the balance reaches a minimum and
  returns it.
- `wait_for_transaction` polls until the transaction is known and returns
  whether it succeeded.

Polling uses `wait_interval` (0.5 s by default) and `wait_timeout`. With
the default timeout of `None` it waits indefinitely. Otherwise it raises
`TimeoutError` when the timeout runs out.

```python
from tokenvm import storage
from tokenvm.address import address
from tokenvm.rpc import JSONRPCClient, JSONRPCServer

db = storage.MemoryDatabase()
owner = bytes(range(32))
native = bytes(32)
storage.set_balance(db, owner, native, 5_000)


class Ledger:
    def genesis(self):
        return {"symbol": "TKN"}

    def get_transaction(self, tx_id):
        return storage.get_transaction(db, tx_id)

    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(db.read_state, asset)

    def get_balance_from_state(self, public_key, asset):
        return storage.get_balance_from_state(db.read_state, public_key, asset)

    def orders(self, pair, limit):
        return []

    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(db.read_state, asset, destination)


server = JSONRPCServer(Ledger(), hrp="token")
client = JSONRPCClient(
    "http://localhost:9650",
    chain_id=bytes(32),
    transport=lambda url, payload: server.handle(payload),
)
print(client.balance(address("token", owner), native))  # 5000
print(client.tx(bytes(32)))  # None
```

## What this package does not do

- It does not listen on a network port. `JSONRPCServer.handle` answers
  requests that something else has received and decoded.
- It does not build, sign or submit transactions, and it does not produce
  or verify blocks.
- It does not define a genesis or match orders. The controller supplies
  the genesis and the order list.
- It keeps no persistent storage of its own. `MemoryDatabase` lives only
  in memory, and durable storage needs a store that provides the same
  three methods.