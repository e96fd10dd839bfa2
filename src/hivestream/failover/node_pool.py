"""
Node Pool: ordered RPC nodes with failure accounting and quarantine.

Failures within a 10 minute window accumulate; at `error_limit` the node is
quarantined for an hour. Re-enabling is lazy, evaluated at selection time.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()

ERROR_WINDOW_SECONDS = 10 * 60
QUARANTINE_SECONDS = 60 * 60


@dataclass
class Node:
    address: str

    # Health state
    consecutive_error_count: int = 0
    last_error_at: Optional[float] = None
    quarantined: bool = False

    # Stats
    total_requests: int = 0
    failed_requests: int = 0

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


class NodePool:
    """
    Holds configured nodes in order, with per-node health counters.

    Features:
    - Burst failures accumulate, sparse failures never trip the limit
    - Quarantined nodes come back after an hour
    - Safety valve: if every node is quarantined, all are re-enabled
    - Counter mutation is serialized by one lock
    """

    def __init__(
        self,
        addresses: list[str],
        error_limit: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        if not addresses:
            raise ValueError("NodePool needs at least one node address")

        self.nodes = [Node(address=a) for a in addresses]
        self.error_limit = error_limit
        self._clock = clock
        self._lock = asyncio.Lock()

    async def list_healthy(self) -> list[Node]:
        """
        Nodes eligible for a call, in configured order.

        Quarantined nodes whose hour is up are re-enabled here.
        """
        async with self._lock:
            now = self._clock()
            for node in self.nodes:
                if (node.quarantined
                        and node.last_error_at is not None
                        and now - node.last_error_at >= QUARANTINE_SECONDS):
                    node.quarantined = False
                    node.consecutive_error_count = 0
                    logger.info("Re-enabling node after quarantine", node=node.address)

            healthy = [n for n in self.nodes if not n.quarantined]
            if not healthy:
                self._reenable_all_locked()
                healthy = list(self.nodes)

            return healthy

    async def record_failure(self, node: Node) -> None:
        """Count a transport failure against a node, quarantining it at the limit."""
        async with self._lock:
            now = self._clock()

            if (node.last_error_at is not None
                    and node.last_error_at > now - ERROR_WINDOW_SECONDS):
                node.consecutive_error_count += 1
            else:
                node.consecutive_error_count = 1

            node.last_error_at = now
            node.total_requests += 1
            node.failed_requests += 1

            if node.consecutive_error_count >= self.error_limit and not node.quarantined:
                node.quarantined = True
                logger.error(
                    "Disabling node due to too many errors",
                    node=node.address,
                    errors=node.consecutive_error_count,
                    error_limit=self.error_limit,
                )

            if all(n.quarantined for n in self.nodes):
                self._reenable_all_locked()

    async def record_success(self, node: Node) -> None:
        """Successful calls leave health untouched; they only feed the stats."""
        async with self._lock:
            node.total_requests += 1

    async def force_reenable_all(self) -> None:
        async with self._lock:
            for node in self.nodes:
                node.quarantined = False
                node.consecutive_error_count = 0

    def _reenable_all_locked(self) -> None:
        logger.critical(
            "All nodes disabled! Re-enabling them",
            nodes=[n.address for n in self.nodes],
        )
        for node in self.nodes:
            node.quarantined = False
            node.consecutive_error_count = 0

    async def get_stats(self) -> list[dict]:
        """Get stats for all nodes."""
        async with self._lock:
            return [
                {
                    "address": n.address,
                    "quarantined": n.quarantined,
                    "consecutive_errors": n.consecutive_error_count,
                    "last_error_at": n.last_error_at,
                    "total_requests": n.total_requests,
                    "failure_rate": f"{n.failure_rate:.1%}",
                }
                for n in self.nodes
            ]

    @property
    def healthy_count(self) -> int:
        return sum(1 for n in self.nodes if not n.quarantined)
