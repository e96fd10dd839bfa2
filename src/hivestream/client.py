"""
HiveClient: owns the node pool, executor, chain cache, submission queue and
streamer for one ledger.

This is the main entry point. Instances share nothing, so two clients can
talk to two different ledgers in the same process.
"""

import asyncio
import inspect
from typing import Any, Callable, Optional, Protocol

import aiohttp
import structlog

from .chain import ChainPropertyCache
from .config import ClientConfig
from .failover import FailoverExecutor, Node, NodePool
from .log import configure_logging
from .rpc import LedgerNode, NodeClient
from .scheduler import Clock
from .streaming import (
    BlockStreamer,
    JsonFileStateStore,
    MemoryStateStore,
    StateStore,
    StreamHandlers,
)
from .submission import SubmissionQueue

logger = structlog.get_logger()

NodeFactory = Callable[[str], LedgerNode]


class Signer(Protocol):
    """Signs a transaction with a private key. May be sync or async."""

    def sign(self, transaction: dict, key: str) -> Any:
        ...


class HiveClient:
    """
    Resilient client over several RPC nodes.

    Features:
    - Failover across nodes with quarantine of failing ones
    - Block, operation and virtual operation streaming with a saved cursor
    - Throttled submission queue for signed transactions
    - Graceful shutdown: stop() lets in-flight calls finish
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        signer: Optional[Signer] = None,
        node_factory: Optional[NodeFactory] = None,
        state_store: Optional[StateStore] = None,
        clock: Optional[Clock] = None,
        setup_logging: bool = False,
    ):
        self.config = config or ClientConfig()
        self.signer = signer
        self.clock = clock or Clock()

        if setup_logging:
            configure_logging(self.config.log_level)

        # Components
        self.pool = NodePool(
            self.config.rpc_nodes,
            error_limit=self.config.rpc_error_limit,
            clock=self.clock.now,
        )
        self.executor = FailoverExecutor(self.pool, call_timeout=self.config.rpc_timeout)
        self.chain = ChainPropertyCache(
            self.call,
            ttl=self.config.chain_properties_ttl,
            clock=self.clock,
        )
        self.submissions = SubmissionQueue(
            interval=self.config.submission_interval,
            max_retries=self.config.submission_max_retries,
            clock=self.clock,
        )

        if state_store is not None:
            self.state_store = state_store
        elif self.config.state_file is not None:
            self.state_store = JsonFileStateStore(self.config.state_file, key=self.config.state_key)
        else:
            self.state_store = MemoryStateStore()

        self.streamer: Optional[BlockStreamer] = None

        self._node_factory = node_factory
        self._nodes: dict[str, LedgerNode] = {}
        self._session: Optional[aiohttp.ClientSession] = None
        self._submission_task: Optional[asyncio.Task] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        if self._node_factory is None and self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        """Clean shutdown. Submissions still queued are rejected."""
        self.stop()
        self.submissions.close()

        if self._submission_task is not None:
            self._submission_task.cancel()
            await asyncio.gather(self._submission_task, return_exceptions=True)
            self._submission_task = None

        await self.submissions.drain()

        if self._session:
            await self._session.close()
            self._session = None
        self._nodes.clear()

        logger.info("Client closed")

    def stop(self) -> None:
        """Stop streaming and submission loops after their current tick."""
        if self.streamer is not None:
            self.streamer.stop()
        self.submissions.stop()

    def _node(self, node: Node) -> LedgerNode:
        client = self._nodes.get(node.address)
        if client is not None:
            return client

        if self._node_factory is not None:
            client = self._node_factory(node.address)
        else:
            if self._session is None:
                raise RuntimeError("HiveClient is not open, use `async with HiveClient(...)`")
            client = NodeClient(
                node.address,
                self._session,
                timeout=self.config.rpc_timeout,
                broadcast_timeout=self.config.broadcast_timeout,
            )

        self._nodes[node.address] = client
        return client

    # Queries

    async def call(self, api: str, method: str, params: Any = None) -> Any:
        """Call `api.method` on the first node that answers."""
        return await self.executor.execute(
            lambda node: self._node(node).call(api, method, params),
            description=f"{api}.{method}",
        )

    async def api(self, method: str, params: Any = None) -> Any:
        """Shorthand for condenser_api calls."""
        return await self.call("condenser_api", method, params if params is not None else [])

    async def get_dynamic_global_properties(self) -> dict:
        return await self.api("get_dynamic_global_properties")

    async def get_block(self, block_number: int) -> Optional[dict]:
        return await self.api("get_block", [block_number])

    async def get_node_stats(self) -> list[dict]:
        return await self.pool.get_stats()

    # Submissions

    async def broadcast(self, operations: list, key: str) -> Any:
        """
        Build, sign and broadcast a transaction right away.

        A rejection by the ledger is raised as-is and never retried on
        another node.
        """
        if self.signer is None:
            raise RuntimeError("No signer configured, cannot broadcast")

        transaction = await self.chain.build_transaction(operations)
        signed = self.signer.sign(transaction, key)
        if inspect.isawaitable(signed):
            signed = await signed

        return await self.executor.execute(
            lambda node: self._node(node).broadcast_transaction(signed),
            description="broadcast_transaction",
            timeout=self.config.broadcast_timeout,
        )

    async def submit(self, operations: list, key: str) -> Any:
        """
        Broadcast through the throttled queue; waits for the result.

        Starts the queue in the background if nothing is running it yet.
        Raises SubmissionCancelledError if the client closes first.
        """
        future = self.submissions.enqueue(operations, key, self.broadcast)
        if not self.submissions.running and not self.submissions.closed:
            if self._submission_task is None or self._submission_task.done():
                self._submission_task = asyncio.create_task(self.submissions.run())
        return await future

    async def run_submissions(self, max_ticks: Optional[int] = None) -> None:
        """Run the submission queue in the foreground, replacing a background runner."""
        if self._submission_task is not None:
            self._submission_task.cancel()
            await asyncio.gather(self._submission_task, return_exceptions=True)
            self._submission_task = None
        await self.submissions.run(max_ticks=max_ticks)

    # Streaming

    def create_streamer(self, handlers: Optional[StreamHandlers] = None) -> BlockStreamer:
        self.streamer = BlockStreamer(
            self.call,
            handlers=handlers,
            state_store=self.state_store,
            use_irreversible_head=self.config.use_irreversible_head,
            blocks_behind_head=self.config.blocks_behind_head,
            clock=self.clock,
        )
        return self.streamer

    async def stream(
        self,
        handlers: Optional[StreamHandlers] = None,
        max_ticks: Optional[int] = None,
    ) -> None:
        """Stream blocks until stop() is called."""
        streamer = self.create_streamer(handlers)
        await streamer.run(max_ticks=max_ticks)

    async def run(self, handlers: Optional[StreamHandlers] = None) -> None:
        """Run streaming and the submission queue together until stopped."""
        await asyncio.gather(
            self.stream(handlers),
            self.run_submissions(),
        )
