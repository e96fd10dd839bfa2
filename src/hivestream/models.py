"""
Data carried between the streamer, the state store and the transaction builder.

Design principles:
- Cursor holds only what is needed to resume streaming
- Chain properties are immutable and replaced wholesale on refresh
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StreamCursor(BaseModel):
    """
    Streaming position, persisted after every processed block.

    The two cursors advance independently; `last_virtual_op_block` never
    passes the irreversible head.
    """
    last_block: Optional[int] = Field(default=None, ge=0, description="Last fully processed block")
    last_virtual_op_block: Optional[int] = Field(
        default=None, ge=0, description="Last block whose virtual ops were dispatched"
    )


class ChainProperties(BaseModel):
    """
    Reference block data used for a transaction's replay protection fields.
    """
    model_config = ConfigDict(frozen=True)

    reference_block_number: int = Field(description="Height of the reference block")
    reference_block_id: str = Field(description="Hex id of the reference block")
    reference_block_prefix: int = Field(description="uint32 read from bytes 4..8 of the id")
    head_block_time: datetime = Field(description="Head block timestamp, UTC")
    fetched_at: float = Field(description="Epoch seconds when fetched")

    @property
    def ref_block_num(self) -> int:
        """Reference block number as carried in a transaction (16 bits)."""
        return self.reference_block_number & 0xFFFF


def block_prefix(block_id: str) -> int:
    """
    Read the reference prefix from a block id.

    The first 4 bytes of an id encode the block number, the next 4 (little
    endian) are the prefix.
    """
    raw = bytes.fromhex(block_id)
    if len(raw) < 8:
        raise ValueError(f"Block id too short: {block_id!r}")
    return int.from_bytes(raw[4:8], "little")
