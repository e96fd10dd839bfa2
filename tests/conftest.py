import asyncio
from typing import Any, Optional

import pytest

from hivestream.scheduler import Clock

GENESIS_TIME = 1_700_000_000.0
BLOCK_TIME = "2024-03-01T12:00:00"


class FakeClock(Clock):
    """Virtual time. sleep() yields to the loop once, then jumps forward."""

    def __init__(self, start: float = GENESIS_TIME):
        self.time = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)
        self.time += seconds

    def advance(self, seconds: float) -> None:
        self.time += seconds


class FakeNode:
    """
    Scripted ledger node.

    `responses` maps "api.method" (or "broadcast") to a value or a callable
    taking the params. `error` is raised by every call when set.
    """

    def __init__(self, address: str, responses: Optional[dict] = None, error: Optional[Exception] = None):
        self.address = address
        self.responses = responses or {}
        self.error = error
        self.calls: list[tuple] = []
        self.broadcasts: list[dict] = []

    async def call(self, api: str, method: str, params: Any = None) -> Any:
        self.calls.append((api, method, params))
        if self.error is not None:
            raise self.error
        response = self.responses[f"{api}.{method}"]
        return response(params) if callable(response) else response

    async def broadcast_transaction(self, transaction: dict) -> Any:
        self.broadcasts.append(transaction)
        if self.error is not None:
            raise self.error
        response = self.responses.get("broadcast", {"id": "f00d", "block_num": 1})
        return response(transaction) if callable(response) else response


def block_id(number: int, salt: str = "00") -> str:
    return f"{number:08x}" + salt * 16


class FakeLedger:
    """
    In-memory chain answering the calls the streamer makes.

    Blocks up to `head` exist. Block numbers in `missing_once` answer null on
    their first request only.
    """

    def __init__(self, head: int, irreversible: Optional[int] = None, missing_once=()):
        self.head = head
        self.irreversible = irreversible if irreversible is not None else head
        self.missing_once = set(missing_once)
        self.transactions: dict[int, list[dict]] = {}
        self.virtual_ops: dict[int, list[dict]] = {}
        self.fail_methods: dict[str, Exception] = {}
        self.calls: list[tuple] = []

    def block(self, number: int) -> dict:
        transactions = self.transactions.get(number, [])
        return {
            "block_id": block_id(number),
            "previous": block_id(number - 1),
            "timestamp": BLOCK_TIME,
            "transactions": transactions,
            "transaction_ids": [f"trx-{number}-{i}" for i in range(len(transactions))],
        }

    async def call(self, api: str, method: str, params: Any = None) -> Any:
        self.calls.append((api, method, params))
        if method in self.fail_methods:
            raise self.fail_methods[method]

        if method == "get_dynamic_global_properties":
            return {
                "head_block_number": self.head,
                "last_irreversible_block_num": self.irreversible,
                "time": BLOCK_TIME,
            }
        if method == "get_block":
            number = params[0]
            if number in self.missing_once:
                self.missing_once.discard(number)
                return None
            if number > self.head:
                return None
            return self.block(number)
        if method == "get_ops_in_block":
            return {"ops": self.virtual_ops.get(params["block_num"], [])}
        raise KeyError(method)

    def requested_blocks(self) -> list[int]:
        return [params[0] for _, method, params in self.calls if method == "get_block"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(head=105)
