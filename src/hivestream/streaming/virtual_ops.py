"""
Virtual operation sub-loop: a second cursor over ledger-derived operations.

Runs once per main streaming tick, one block per run, and never goes past
the irreversible height.
"""

from typing import Any, Awaitable, Callable, Optional

import structlog

from .handlers import invoke_handler
from ..models import StreamCursor
from ..rpc import RPCError

logger = structlog.get_logger()

CallFn = Callable[[str, str, Any], Awaitable[Any]]


class VirtualOpStreamer:
    def __init__(
        self,
        call: CallFn,
        on_virtual_operation: Callable[..., Any],
        persist: Callable[[], Awaitable[None]],
    ):
        self._call = call
        self.on_virtual_operation = on_virtual_operation
        self._persist = persist

    async def step(self, cursor: StreamCursor, irreversible: int) -> Optional[int]:
        """
        Process the next block's virtual ops if it is irreversible.

        Returns the block number processed, or None if nothing was done.
        """
        if cursor.last_virtual_op_block is None:
            cursor.last_virtual_op_block = irreversible
            logger.info("Starting virtual op stream", block_number=irreversible)
            await self._persist()
            return None

        if cursor.last_virtual_op_block >= irreversible:
            return None

        block_number = cursor.last_virtual_op_block + 1
        try:
            result = await self._call(
                "account_history_api",
                "get_ops_in_block",
                {"block_num": block_number, "only_virtual": True},
            )
        except RPCError as e:
            logger.warning("Error loading virtual ops", block_number=block_number, error=str(e))
            return None

        if not isinstance(result, dict) or result.get("ops") is None:
            logger.debug("No virtual ops returned", block_number=block_number)
            return None

        # only_virtual is a hint some nodes ignore
        virtual = [op for op in result["ops"] if op.get("virtual_op")]
        for op in virtual:
            await invoke_handler(
                "on_virtual_operation",
                self.on_virtual_operation,
                op,
                block_number,
                block_number=block_number,
                trx_id=op.get("trx_id"),
            )

        cursor.last_virtual_op_block = block_number
        await self._persist()
        return block_number
