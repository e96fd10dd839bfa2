"""
JSON-RPC client for a single Hive node, plus the error taxonomy.

Every failure is classified at this boundary:
- TransportError: node unreachable, timeout, bad HTTP status, malformed body
- TransactionSemanticError: the ledger rejected a broadcast transaction
- SubmissionRateLimitedError: the account hit the per-block submission cap

The failover executor relies on this split: transport errors move on to the
next node, semantic errors go straight back to the caller.
"""

import asyncio
from typing import Any, Optional, Protocol

import aiohttp
import orjson
import structlog

logger = structlog.get_logger()

BROADCAST_METHOD = "broadcast_transaction_synchronous"

# Fragments of the assertion the chain raises when an account submits too
# many custom_json operations in one block.
RATE_LIMIT_MARKERS = (
    "custom json operation(s) this block",
    "too many custom json operations",
)

# Parse error, invalid request, method not found, internal error: the node is
# at fault, not the transaction.
NODE_FAULT_CODES = (-32700, -32600, -32601, -32603)


class RPCError(Exception):
    """Base class for every error raised by the RPC layer."""
    pass


class TransportError(RPCError):
    """Node unreachable, timed out, or returned something unusable."""

    def __init__(self, message: str, node: Optional[str] = None):
        super().__init__(message)
        self.node = node


class AllNodesExhaustedError(TransportError):
    """Every healthy node failed with a transport error."""

    def __init__(self, message: str, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.last_error = last_error


class TransactionSemanticError(RPCError):
    """The ledger rejected the operation itself. Never retried on another node."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class SubmissionRateLimitedError(TransactionSemanticError):
    """Too many submissions from one account within a block."""
    pass


class BlockNotYetProducedError(RPCError):
    """The requested block does not exist yet. Transient."""

    def __init__(self, block_number: int):
        super().__init__(f"Block {block_number} not yet produced")
        self.block_number = block_number


class LedgerNode(Protocol):
    """What the client needs from one node."""

    address: str

    async def call(self, api: str, method: str, params: Any = None) -> Any:
        ...

    async def broadcast_transaction(self, transaction: dict) -> Any:
        ...


def classify_broadcast_error(error: dict, node: Optional[str] = None) -> RPCError:
    """Turn a JSON-RPC error object from a broadcast into a typed error."""
    message = str(error.get("message", error))
    data = error.get("data")

    if error.get("code") in NODE_FAULT_CODES:
        return TransportError(f"RPC error: {message}", node=node)

    text = f"{message} {orjson.dumps(data, default=str).decode() if data else ''}".lower()
    if any(marker in text for marker in RATE_LIMIT_MARKERS):
        return SubmissionRateLimitedError(message, code=error.get("code"), data=data)
    return TransactionSemanticError(message, code=error.get("code"), data=data)


class NodeClient:
    """
    Async JSON-RPC 2.0 client bound to one node address.

    The aiohttp session is shared between nodes and owned by the caller;
    each request carries its own timeout.
    """

    def __init__(
        self,
        address: str,
        session: aiohttp.ClientSession,
        timeout: float = 1.0,
        broadcast_timeout: float = 10.0,
    ):
        self.address = address
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.broadcast_timeout = aiohttp.ClientTimeout(total=broadcast_timeout)
        self._session = session
        self._request_id = 0

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _post(
        self,
        method: str,
        params: Any,
        timeout: Optional[aiohttp.ClientTimeout] = None,
    ) -> dict:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params if params is not None else [],
            "id": self._next_request_id(),
        }

        try:
            async with self._session.post(
                self.address,
                data=orjson.dumps(payload),
                headers={"Content-Type": "application/json"},
                timeout=timeout or self.timeout,
            ) as resp:
                if resp.status != 200:
                    raise TransportError(
                        f"HTTP {resp.status}: {(await resp.text())[:200]}",
                        node=self.address,
                    )
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{type(e).__name__}: {e}", node=self.address) from e

        try:
            data = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise TransportError(f"Malformed response: {e}", node=self.address) from e

        if not isinstance(data, dict) or ("result" not in data and "error" not in data):
            raise TransportError("Malformed response: missing result", node=self.address)

        return data

    async def call(self, api: str, method: str, params: Any = None) -> Any:
        """Query call. Any error reported by the node counts against the node."""
        data = await self._post(f"{api}.{method}", params)

        if "error" in data:
            raise TransportError(f"RPC error: {data['error']}", node=self.address)

        return data["result"]

    async def broadcast_transaction(self, transaction: dict) -> Any:
        """Broadcast a signed transaction and wait for block inclusion."""
        data = await self._post(
            f"condenser_api.{BROADCAST_METHOD}",
            [transaction],
            timeout=self.broadcast_timeout,
        )

        if "error" in data:
            error = data["error"]
            if not isinstance(error, dict):
                raise TransportError(f"RPC error: {error}", node=self.address)
            logger.debug(
                "Broadcast rejected",
                node=self.address,
                code=error.get("code"),
                message=str(error.get("message"))[:200],
            )
            raise classify_broadcast_error(error, node=self.address)

        return data["result"]

    def __repr__(self) -> str:
        return f"NodeClient({self.address!r})"
