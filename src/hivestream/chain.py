"""
Chain property cache: reference block data for locally built transactions.

Fetched through the failover executor and reused for a short TTL.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

from .models import ChainProperties, block_prefix
from .scheduler import Clock

logger = structlog.get_logger()

CallFn = Callable[[str, str, Any], Awaitable[Any]]

DEFAULT_TTL_SECONDS = 60
DEFAULT_EXPIRATION_SECONDS = 60
TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def parse_chain_time(value: str) -> datetime:
    """Chain timestamps are UTC without a zone suffix."""
    return datetime.strptime(value.rstrip("Z"), TIME_FORMAT).replace(tzinfo=timezone.utc)


class ChainPropertyCache:
    """
    Caches ChainProperties for `ttl` seconds.

    Features:
    - Two dependent calls on refresh (global properties, then the header at
      the last irreversible height)
    - Value replaced as a whole, never patched
    - Stale value is never handed out
    """

    def __init__(
        self,
        call: CallFn,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Clock] = None,
    ):
        self._call = call
        self.ttl = ttl
        self.clock = clock or Clock()
        self._current: Optional[ChainProperties] = None

    def is_stale(self) -> bool:
        if self._current is None:
            return True
        return self.clock.now() - self._current.fetched_at >= self.ttl

    async def current(self) -> ChainProperties:
        if not self.is_stale():
            return self._current

        props = await self._call("condenser_api", "get_dynamic_global_properties", [])
        irreversible = props["last_irreversible_block_num"]
        header = await self._call("condenser_api", "get_block_header", [irreversible])

        # The header's `previous` is the id of the block just below irreversible.
        reference_id = header["previous"]
        self._current = ChainProperties(
            reference_block_number=irreversible - 1,
            reference_block_id=reference_id,
            reference_block_prefix=block_prefix(reference_id),
            head_block_time=parse_chain_time(props["time"]),
            fetched_at=self.clock.now(),
        )

        logger.debug(
            "Refreshed chain properties",
            reference_block=self._current.reference_block_number,
            prefix=self._current.reference_block_prefix,
        )
        return self._current

    async def build_transaction(
        self,
        operations: list,
        expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
    ) -> dict:
        """Unsigned transaction with replay protection fields filled in."""
        props = await self.current()
        expiration = props.head_block_time + timedelta(seconds=expiration_seconds)
        return {
            "ref_block_num": props.ref_block_num,
            "ref_block_prefix": props.reference_block_prefix,
            "expiration": expiration.strftime(TIME_FORMAT),
            "operations": operations,
            "extensions": [],
        }
