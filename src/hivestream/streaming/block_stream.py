"""
Block streamer: polls for new blocks and fires handlers for each operation.

Tracks a cursor (last processed block), persists it after every block, and
reports when it falls 20 or more blocks behind the head.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from .handlers import StreamHandlers, invoke_handler
from .state import MemoryStateStore, StateStore
from .virtual_ops import VirtualOpStreamer
from ..chain import parse_chain_time
from ..models import StreamCursor
from ..rpc import BlockNotYetProducedError, RPCError
from ..scheduler import Clock, Ticker

logger = structlog.get_logger()

CallFn = Callable[[str, str, Any], Awaitable[Any]]

BEHIND_BLOCKS_THRESHOLD = 20


class StreamState(Enum):
    CATCHING_UP = "catching_up"
    STREAMING = "streaming"
    IDLE_WAIT = "idle_wait"


class BlockStreamer:
    """
    Streams blocks in order, one RPC call per block.

    Features:
    - Starts at the head on first run, never replays history
    - Resumes from the persisted cursor on restart
    - Optional irreversible-only mode and trailing margin
    - Handler errors are logged and never stop the stream
    - Optional virtual op sub-loop bounded by irreversibility
    """

    def __init__(
        self,
        call: CallFn,
        handlers: Optional[StreamHandlers] = None,
        state_store: Optional[StateStore] = None,
        use_irreversible_head: bool = False,
        blocks_behind_head: int = 0,
        interval: float = 1.0,
        retry_delay: float = 1.0,
        clock: Optional[Clock] = None,
    ):
        self._call = call
        self.handlers = handlers or StreamHandlers()
        self.state_store = state_store or MemoryStateStore()
        self.use_irreversible_head = use_irreversible_head
        self.blocks_behind_head = blocks_behind_head
        self.retry_delay = retry_delay
        self.clock = clock or Clock()
        self.ticker = Ticker("block-stream", interval=interval, clock=self.clock)

        self.cursor = StreamCursor()
        self.state: Optional[StreamState] = None
        self.head_block_number: Optional[int] = None
        self._blocks_processed = 0
        self._initialized = False

        self.virtual_ops: Optional[VirtualOpStreamer] = None
        if self.handlers.on_virtual_operation is not None:
            self.virtual_ops = VirtualOpStreamer(
                call,
                self.handlers.on_virtual_operation,
                persist=self._persist,
            )

    @property
    def blocks_processed(self) -> int:
        return self._blocks_processed

    async def initialize(self) -> None:
        """Load the saved cursor, if any."""
        if self._initialized:
            return
        try:
            saved = await self.state_store.load()
        except Exception as e:
            logger.error("Failed to load stream state", error=str(e))
            saved = None
        if saved is not None:
            self.cursor = saved
        self._initialized = True

    async def run(self, max_ticks: Optional[int] = None) -> None:
        await self.initialize()
        logger.info(
            "Block streamer starting",
            last_block=self.cursor.last_block,
            irreversible_only=self.use_irreversible_head,
            virtual_ops=self.virtual_ops is not None,
        )
        await self.ticker.run(self.tick, max_ticks=max_ticks)

    def stop(self) -> None:
        self.ticker.stop()

    async def tick(self) -> None:
        """One polling pass: find the head, catch up to it, then virtual ops."""
        await self.initialize()

        try:
            props = await self._call("condenser_api", "get_dynamic_global_properties", [])
        except RPCError as e:
            logger.warning("Unable to load head block", error=str(e))
            return

        irreversible = props["last_irreversible_block_num"]
        head = irreversible if self.use_irreversible_head else props["head_block_number"]
        head -= self.blocks_behind_head
        self.head_block_number = head

        if self.cursor.last_block is None:
            self.cursor.last_block = max(head - 1, 0)
            logger.info("No saved state, starting from head", block_number=head)

        gap = head - self.cursor.last_block
        self._update_state(gap)

        if gap >= BEHIND_BLOCKS_THRESHOLD:
            logger.warning("Streaming is behind", blocks_behind=gap, head=head)
            await invoke_handler("on_behind_blocks", self.handlers.on_behind_blocks, gap)

        while head > self.cursor.last_block and not self.ticker.stopped:
            block_number = self.cursor.last_block + 1
            try:
                block = await self._fetch_block(block_number)
            except BlockNotYetProducedError:
                logger.debug("Block not yet available", block_number=block_number)
                await self.clock.sleep(self.retry_delay)
                break
            except RPCError as e:
                logger.warning("Error loading block", block_number=block_number, error=str(e))
                await self.clock.sleep(self.retry_delay)
                break

            await self._process_block(block_number, block, head)

        if self.cursor.last_block >= head:
            self._update_state(0)

        if self.virtual_ops is not None and not self.ticker.stopped:
            await self.virtual_ops.step(self.cursor, irreversible)

    async def _fetch_block(self, block_number: int) -> dict:
        block = await self._call("condenser_api", "get_block", [block_number])
        # Nodes answer null for blocks that do not exist yet
        if not block or "transactions" not in block:
            raise BlockNotYetProducedError(block_number)
        return block

    async def _process_block(self, block_number: int, block: dict, head: int) -> None:
        # Every 1000th block at info level so progress is visible in the logs
        log = logger.info if block_number % 1000 == 0 else logger.debug
        log("Processing block", block_number=block_number, head=head)

        await invoke_handler(
            "on_block",
            self.handlers.on_block,
            block_number,
            block,
            head,
            block_number=block_number,
        )

        if self.handlers.on_operation is not None:
            await self._dispatch_operations(block_number, block)

        self.cursor.last_block = block_number
        self._blocks_processed += 1
        await self._persist()

    async def _dispatch_operations(self, block_number: int, block: dict) -> None:
        block_time = parse_chain_time(block["timestamp"])
        transaction_ids = block.get("transaction_ids") or []

        for i, trx in enumerate(block["transactions"]):
            trx_id = transaction_ids[i] if i < len(transaction_ids) else trx.get("transaction_id")

            for op_index, op in enumerate(trx.get("operations", [])):
                await invoke_handler(
                    "on_operation",
                    self.handlers.on_operation,
                    op,
                    block_number,
                    block.get("block_id"),
                    block.get("previous"),
                    trx_id,
                    block_time,
                    op_index,
                    block_number=block_number,
                    trx_id=trx_id,
                )

    async def _persist(self) -> None:
        """Save the cursor. Failures are logged, streaming carries on."""
        try:
            await self.state_store.save(self.cursor.model_copy())
        except Exception as e:
            logger.error("Failed to save stream state", error=str(e))

    def _update_state(self, gap: int) -> None:
        if gap >= BEHIND_BLOCKS_THRESHOLD:
            state = StreamState.CATCHING_UP
        elif gap > 0:
            state = StreamState.STREAMING
        else:
            state = StreamState.IDLE_WAIT

        if state != self.state:
            logger.debug(
                "Stream state changed",
                previous=self.state.value if self.state else None,
                state=state.value,
            )
            self.state = state
