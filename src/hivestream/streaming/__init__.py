"""
Block and virtual operation streaming with a persisted cursor.
"""

from .block_stream import BlockStreamer, StreamState
from .handlers import StreamHandlers
from .state import JsonFileStateStore, MemoryStateStore, StateStore
from .virtual_ops import VirtualOpStreamer

__all__ = [
    "BlockStreamer",
    "StreamState",
    "StreamHandlers",
    "JsonFileStateStore",
    "MemoryStateStore",
    "StateStore",
    "VirtualOpStreamer",
]
