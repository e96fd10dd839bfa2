"""
Failover executor: run one call against the pool, node by node.

First success wins. Transport errors penalize the node and move on;
transaction-semantic errors go straight back to the caller so a rejected (or
already accepted) transaction is never replayed against another node.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from .node_pool import Node, NodePool
from ..rpc import AllNodesExhaustedError, TransactionSemanticError, TransportError

logger = structlog.get_logger()

T = TypeVar("T")


class FailoverExecutor:
    """
    Executes `fn(node)` on healthy nodes in pool order.

    Each attempt is bounded by `call_timeout` so a hung node cannot stall
    failover; a timeout counts as a transport error.
    """

    def __init__(self, pool: NodePool, call_timeout: Optional[float] = 1.0):
        self.pool = pool
        self.call_timeout = call_timeout

    async def _attempt(
        self,
        fn: Callable[[Node], Awaitable[T]],
        node: Node,
        timeout: Optional[float],
    ) -> T:
        if timeout is None:
            return await fn(node)
        try:
            return await asyncio.wait_for(fn(node), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out after {timeout}s", node=node.address) from e

    async def execute(
        self,
        fn: Callable[[Node], Awaitable[T]],
        description: str = "call",
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run `fn` against healthy nodes until one succeeds.

        `timeout` overrides the executor default for this call.
        """
        timeout = self.call_timeout if timeout is None else timeout
        last_error: Optional[TransportError] = None

        for node in await self.pool.list_healthy():
            try:
                result = await self._attempt(fn, node, timeout)
            except TransactionSemanticError as e:
                logger.warning(
                    "Ledger rejected operation",
                    call=description,
                    node=node.address,
                    error=str(e),
                )
                raise
            except TransportError as e:
                last_error = e
                logger.warning(
                    "Error calling node",
                    call=description,
                    node=node.address,
                    error=str(e),
                )
                await self.pool.record_failure(node)
                continue

            await self.pool.record_success(node)
            return result

        logger.error("All nodes failed", call=description)
        raise AllNodesExhaustedError(
            f"All nodes failed calling [{description}]: {last_error}",
            last_error=last_error,
        ) from last_error
