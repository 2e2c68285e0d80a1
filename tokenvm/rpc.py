"""JSON-RPC service and client for querying token VM state."""

from __future__ import annotations

import base64
import dataclasses
import hashlib
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .address import parse_address, address as render_address
from .storage import AssetInfo, TransactionRecord

JSONRPC_ENDPOINT = "/tokenapi"
NAME = "tokenvm"
ORDERS_TO_SEND = 128
ID_LEN = 32

WAIT_INTERVAL = 0.5

_SERVER_ERROR = -32000
_INVALID_REQUEST = -32600
_METHOD_NOT_FOUND = -32601
_INVALID_PARAMS = -32602

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {char: index for index, char in enumerate(_B58_ALPHABET)}
_CHECKSUM_LEN = 4

_log = logging.getLogger(__name__)

Transport = Callable[[str, Mapping[str, Any]], Mapping[str, Any]]


class RPCError(Exception):
    """A JSON-RPC call failed."""

    def __init__(self, message: str, code: int = _SERVER_ERROR) -> None:
        super().__init__(message)
        self.code = code


class TxNotFoundError(RPCError):
    """The requested transaction is unknown."""

    def __init__(self) -> None:
        super().__init__("tx not found")


class AssetNotFoundError(RPCError):
    """The requested asset is unknown."""

    def __init__(self) -> None:
        super().__init__("asset not found")


class _InvalidParamsError(RPCError):
    def __init__(self, message: str) -> None:
        super().__init__(message, _INVALID_PARAMS)


class Controller(Protocol):
    """State access the JSON-RPC service relies on."""

    def genesis(self) -> Any: ...

    def get_transaction(self, tx_id: bytes) -> Optional[TransactionRecord]: ...

    def get_asset_from_state(self, asset: bytes) -> Optional[AssetInfo]: ...

    def get_balance_from_state(self, public_key: bytes, asset: bytes) -> int: ...

    def orders(self, pair: str, limit: int) -> list[Any]: ...

    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int: ...


@dataclass(frozen=True)
class AssetDetails:
    """An asset as reported by the service; the owner is an address."""

    metadata: bytes
    supply: int
    owner: str
    warp: bool


def _b58_encode(data: bytes) -> str:
    zeros = len(data) - len(data.lstrip(b"\0"))
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, rem = divmod(number, 58)
        digits.append(_B58_ALPHABET[rem])
    return "1" * zeros + "".join(reversed(digits))


def _b58_decode(text: str) -> bytes:
    zeros = len(text) - len(text.lstrip("1"))
    number = 0
    for char in text:
        try:
            number = number * 58 + _B58_INDEX[char]
        except KeyError:
            raise _InvalidParamsError(f"invalid base58 character {char!r}") from None
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\0" * zeros + body


def _encode_id(value: bytes) -> str:
    value = bytes(value)
    if len(value) != ID_LEN:
        raise ValueError(f"id must be {ID_LEN} bytes, got {len(value)}")
    checksum = hashlib.sha256(value).digest()[-_CHECKSUM_LEN:]
    return _b58_encode(value + checksum)


def _decode_id(text: Optional[str]) -> bytes:
    if text is None:
        return bytes(ID_LEN)
    if not isinstance(text, str):
        raise _InvalidParamsError("id must be a string")
    raw = _b58_decode(text)
    if len(raw) != ID_LEN + _CHECKSUM_LEN:
        raise _InvalidParamsError(f"id decodes to {len(raw)} bytes")
    value, checksum = raw[:ID_LEN], raw[ID_LEN:]
    if hashlib.sha256(value).digest()[-_CHECKSUM_LEN:] != checksum:
        raise _InvalidParamsError("id checksum is invalid")
    return value


def _to_json(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


class JSONRPCServer:
    """Answers token VM queries against a controller."""

    def __init__(self, controller: Controller, hrp: str, namespace: str = NAME) -> None:
        self._controller = controller
        self._hrp = hrp
        self._namespace = namespace
        self._methods: dict[str, Callable[[Mapping[str, Any]], dict[str, Any]]] = {
            "genesis": lambda params: self.genesis(),
            "tx": lambda params: self.tx(_decode_id(params.get("txId"))),
            "asset": lambda params: self.asset(_decode_id(params.get("asset"))),
            "balance": lambda params: self.balance(
                params.get("address", ""), _decode_id(params.get("asset"))
            ),
            "orders": lambda params: self.orders(params.get("pair", "")),
            "loan": lambda params: self.loan(
                _decode_id(params.get("destination")), _decode_id(params.get("asset"))
            ),
        }

    def genesis(self) -> dict[str, Any]:
        return {"genesis": _to_json(self._controller.genesis())}

    def tx(self, tx_id: bytes) -> dict[str, Any]:
        record = self._controller.get_transaction(tx_id)
        if record is None:
            raise TxNotFoundError()
        return {"timestamp": record.timestamp, "success": record.success, "units": record.units}

    def asset(self, asset: bytes) -> dict[str, Any]:
        info = self._controller.get_asset_from_state(asset)
        if info is None:
            raise AssetNotFoundError()
        return {
            "metadata": base64.b64encode(info.metadata).decode("ascii"),
            "supply": info.supply,
            "owner": render_address(self._hrp, info.owner),
            "warp": info.warp,
        }

    def balance(self, address: str, asset: bytes) -> dict[str, Any]:
        public_key = parse_address(self._hrp, address)
        return {"amount": self._controller.get_balance_from_state(public_key, asset)}

    def orders(self, pair: str) -> dict[str, Any]:
        orders = self._controller.orders(pair, ORDERS_TO_SEND)
        return {"orders": [_to_json(order) for order in orders]}

    def loan(self, destination: bytes, asset: bytes) -> dict[str, Any]:
        return {"amount": self._controller.get_loan_from_state(asset, destination)}

    def handle(self, request: Mapping[str, Any]) -> dict[str, Any]:
        """Answer one decoded JSON-RPC request with a response object."""
        request_id = request.get("id") if isinstance(request, Mapping) else None
        try:
            result = self._dispatch(request)
        except RPCError as exc:
            return self._error(request_id, exc.code, str(exc))
        except Exception as exc:  # any controller failure is reported to the caller
            return self._error(request_id, _SERVER_ERROR, str(exc))
        return {"jsonrpc": "2.0", "result": result, "id": request_id}

    def _dispatch(self, request: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(request, Mapping) or not isinstance(request.get("method"), str):
            raise RPCError("invalid request", _INVALID_REQUEST)
        service, _, name = request["method"].partition(".")
        handler = None
        if service == self._namespace and name:
            handler = self._methods.get(name[0].lower() + name[1:])
        if handler is None:
            raise RPCError(f"method {request['method']!r} not found", _METHOD_NOT_FOUND)
        params = request.get("params")
        if isinstance(params, list):
            params = params[0] if params else {}
        if params is None:
            params = {}
        if not isinstance(params, Mapping):
            raise _InvalidParamsError("params must be an object")
        return handler(params)

    @staticmethod
    def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "error": {"code": code, "message": message},
            "id": request_id,
        }


def _http_transport(url: str, payload: Mapping[str, Any]) -> Mapping[str, Any]:
    request = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request) as response:
            body = response.read()
    except urllib.error.HTTPError as exc:
        body = exc.read()
        if not body:
            raise RPCError(f"HTTP {exc.code}") from exc
    except urllib.error.URLError as exc:
        raise RPCError(f"request failed: {exc.reason}") from exc
    try:
        return json.loads(body)
    except ValueError as exc:
        raise RPCError(f"invalid response: {exc}") from exc


def _wait(check: Callable[[], bool], interval: float, timeout: Optional[float]) -> None:
    deadline = None if timeout is None else time.monotonic() + timeout
    while not check():
        if deadline is not None and time.monotonic() >= deadline:
            raise TimeoutError("condition not met before timeout")
        time.sleep(interval)


class JSONRPCClient:
    """Client for the token VM JSON-RPC service.

    ``wait_interval`` and ``wait_timeout`` govern the polling done by the
    ``wait_for_*`` methods; a timeout of None waits indefinitely.
    """

    def __init__(
        self,
        uri: str,
        chain_id: bytes,
        *,
        namespace: str = NAME,
        transport: Optional[Transport] = None,
        wait_interval: float = WAIT_INTERVAL,
        wait_timeout: Optional[float] = None,
    ) -> None:
        self.uri = uri.removesuffix("/") + JSONRPC_ENDPOINT
        self.chain_id = bytes(chain_id)
        self.wait_interval = wait_interval
        self.wait_timeout = wait_timeout
        self._namespace = namespace
        self._transport = transport or _http_transport
        self._ids = itertools.count(1)
        self._genesis: Any = None

    def _call(self, method: str, params: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "method": f"{self._namespace}.{method}",
            "params": params,
            "id": next(self._ids),
        }
        response = self._transport(self.uri, payload)
        error = response.get("error")
        if error:
            if isinstance(error, Mapping):
                raise RPCError(str(error.get("message", "")), int(error.get("code", _SERVER_ERROR)))
            raise RPCError(str(error))
        return response.get("result") or {}

    def genesis(self) -> Any:
        """Fetch the genesis, once; later calls return the cached copy."""
        if self._genesis is None:
            self._genesis = self._call("genesis", None).get("genesis")
        return self._genesis

    def tx(self, tx_id: bytes) -> Optional[TransactionRecord]:
        """Return the transaction record, or None if the service does not know it."""
        try:
            reply = self._call("tx", {"txId": _encode_id(tx_id)})
        except RPCError as exc:
            if TxNotFoundError().args[0] in str(exc):
                return None
            raise
        return TransactionRecord(
            timestamp=int(reply.get("timestamp", 0)),
            success=bool(reply.get("success", False)),
            units=int(reply.get("units", 0)),
        )

    def asset(self, asset: bytes) -> Optional[AssetDetails]:
        """Return the asset, or None if it does not exist."""
        try:
            reply = self._call("asset", {"asset": _encode_id(asset)})
        except RPCError as exc:
            if AssetNotFoundError().args[0] in str(exc):
                return None
            raise
        metadata = reply.get("metadata")
        return AssetDetails(
            metadata=base64.b64decode(metadata) if metadata else b"",
            supply=int(reply.get("supply", 0)),
            owner=str(reply.get("owner", "")),
            warp=bool(reply.get("warp", False)),
        )

    def balance(self, address: str, asset: bytes) -> int:
        reply = self._call("balance", {"address": address, "asset": _encode_id(asset)})
        return int(reply.get("amount", 0))

    def orders(self, pair: str) -> list[Any]:
        return list(self._call("orders", {"pair": pair}).get("orders") or [])

    def loan(self, asset: bytes, destination: bytes) -> int:
        reply = self._call(
            "loan", {"asset": _encode_id(asset), "destination": _encode_id(destination)}
        )
        return int(reply.get("amount", 0))

    def wait_for_balance(self, address: str, asset: bytes, minimum: int) -> int:
        """Poll until the balance reaches ``minimum``; return the balance seen."""
        observed = 0

        def reached() -> bool:
            nonlocal observed
            observed = self.balance(address, asset)
            if observed < minimum:
                _log.info("waiting for %d balance: %s", minimum, address)
                return False
            return True

        _wait(reached, self.wait_interval, self.wait_timeout)
        return observed

    def wait_for_transaction(self, tx_id: bytes) -> bool:
        """Poll until the transaction is known; return whether it succeeded."""
        record: Optional[TransactionRecord] = None

        def found() -> bool:
            nonlocal record
            record = self.tx(tx_id)
            return record is not None

        _wait(found, self.wait_interval, self.wait_timeout)
        assert record is not None
        return record.success