import json

import pytest

from tokenvm import storage
from tokenvm.address import address
from tokenvm.rpc import (
    JSONRPCClient,
    JSONRPCServer,
    ORDERS_TO_SEND,
    AssetNotFoundError,
    RPCError,
    TxNotFoundError,
)

HRP = "token"
CHAIN_ID = bytes([7]) * 32
OWNER = bytes(range(32))
OTHER = bytes(range(32, 64))
ASSET = bytes([1]) * 32
DEST = bytes([2]) * 32
TX_ID = bytes([3]) * 32


class FakeController:
    def __init__(self):
        self.db = storage.MemoryDatabase()
        self.order_book = {}
        self.genesis_calls = 0
        self.last_limit = None

    def genesis(self):
        self.genesis_calls += 1
        return {"hrp": HRP}

    def get_transaction(self, tx_id):
        return storage.get_transaction(self.db, tx_id)

    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(self.db.read_state, asset)

    def get_balance_from_state(self, public_key, asset):
        return storage.get_balance_from_state(self.db.read_state, public_key, asset)

    def orders(self, pair, limit):
        self.last_limit = limit
        return self.order_book.get(pair, [])[:limit]

    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(self.db.read_state, asset, destination)


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def server(controller):
    return JSONRPCServer(controller, HRP)


@pytest.fixture
def client(server):
    def transport(url, payload):
        request = json.loads(json.dumps(payload))
        return json.loads(json.dumps(server.handle(request)))

    return JSONRPCClient("http://localhost:9650/ext/bc/chain", CHAIN_ID, transport=transport)


def test_uri_gets_endpoint_and_trailing_slash_trimmed():
    seen = []

    def transport(url, payload):
        seen.append((url, payload["method"]))
        return {"result": {"amount": 4}}

    client = JSONRPCClient("http://localhost:9650/ext/bc/x/", CHAIN_ID, transport=transport)
    assert client.loan(ASSET, DEST) == 4
    assert seen == [("http://localhost:9650/ext/bc/x/tokenapi", "tokenvm.loan")]


def test_genesis_is_cached(client, controller):
    first = client.genesis()
    second = client.genesis()
    assert first == {"hrp": HRP}
    assert second == first
    assert controller.genesis_calls == 1


def test_balance_roundtrip(client, controller):
    storage.set_balance(controller.db, OWNER, ASSET, 500)
    assert client.balance(address(HRP, OWNER), ASSET) == 500
    assert client.balance(address(HRP, OTHER), ASSET) == 0


def test_balance_with_bad_address_raises(client):
    with pytest.raises(RPCError):
        client.balance("not-an-address", ASSET)


def test_balance_with_wrong_prefix_raises(client):
    with pytest.raises(RPCError):
        client.balance(address("other", OWNER), ASSET)


def test_tx_missing_returns_none(client):
    assert client.tx(TX_ID) is None


def test_tx_found(client, controller):
    storage.store_transaction(controller.db, TX_ID, 1700, True, 472)
    record = client.tx(TX_ID)
    assert record == storage.TransactionRecord(1700, True, 472)


def test_asset_missing_returns_none(client):
    assert client.asset(ASSET) is None


def test_asset_found(client, controller):
    storage.set_asset(controller.db, ASSET, b"blah", 15, OWNER, True)
    details = client.asset(ASSET)
    assert details.metadata == b"blah"
    assert details.supply == 15
    assert details.owner == address(HRP, OWNER)
    assert details.warp is True


def test_asset_empty_metadata(client, controller):
    storage.set_asset(controller.db, ASSET, b"", 0, storage.EMPTY_PUBLIC_KEY, False)
    details = client.asset(ASSET)
    assert details.metadata == b""
    assert details.owner == address(HRP, storage.EMPTY_PUBLIC_KEY)
    assert details.warp is False


def test_loan_roundtrip(client, controller):
    storage.add_loan(controller.db, ASSET, DEST, 110)
    assert client.loan(ASSET, DEST) == 110
    assert client.loan(DEST, ASSET) == 0


def test_orders_limited_by_server(client, controller):
    pair = "a-b"
    controller.order_book[pair] = [{"remaining": n} for n in range(ORDERS_TO_SEND + 10)]
    orders = client.orders(pair)
    assert controller.last_limit == ORDERS_TO_SEND
    assert len(orders) == ORDERS_TO_SEND
    assert orders[0] == {"remaining": 0}
    assert client.orders("missing") == []


def test_server_raises_not_found_directly(server):
    with pytest.raises(TxNotFoundError):
        server.tx(TX_ID)
    with pytest.raises(AssetNotFoundError):
        server.asset(ASSET)


def test_server_reports_not_found_message(server):
    response = server.handle({"method": "tokenvm.asset", "params": [{}], "id": 9})
    assert response["id"] == 9
    assert response["error"]["message"] == "asset not found"


def test_unknown_method(server):
    response = server.handle({"method": "tokenvm.nope", "id": 1})
    assert response["error"]["code"] == -32601
    other = server.handle({"method": "othervm.genesis", "id": 2})
    assert other["error"]["code"] == -32601


def test_capitalised_method_name(server):
    response = server.handle({"method": "tokenvm.Genesis", "id": 3})
    assert response["result"] == {"genesis": {"hrp": HRP}}


def test_invalid_id_is_rejected(server):
    response = server.handle({"method": "tokenvm.tx", "params": {"txId": "0OIl"}, "id": 4})
    assert response["error"]["code"] == -32602


def test_client_rejects_wrong_length_id(client):
    with pytest.raises(ValueError):
        client.loan(b"short", DEST)


def test_wait_for_transaction_returns_success_flag(client, controller):
    storage.store_transaction(controller.db, TX_ID, 5, False, 1)
    assert client.wait_for_transaction(TX_ID) is False


def test_wait_for_transaction_polls_until_found(server, controller):
    calls = []

    def transport(url, payload):
        calls.append(payload["method"])
        if len(calls) == 3:
            storage.store_transaction(controller.db, TX_ID, 9, True, 2)
        return server.handle(payload)

    client = JSONRPCClient("http://localhost", CHAIN_ID, transport=transport)
    assert client.wait_for_transaction(TX_ID) is True
    assert len(calls) == 3


def test_wait_for_balance_reached(client, controller):
    storage.set_balance(controller.db, OWNER, ASSET, 10)
    assert client.wait_for_balance(address(HRP, OWNER), ASSET, 5) == 10


def test_error_response_without_mapping_raises():
    client = JSONRPCClient(
        "http://localhost", CHAIN_ID, transport=lambda url, payload: {"error": "broken"}
    )
    with pytest.raises(RPCError, match="broken"):
        client.balance(address(HRP, OWNER), ASSET)