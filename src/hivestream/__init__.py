"""
Resilient client for Hive-style ledgers: node failover, block streaming and
throttled submissions.
"""

from .client import HiveClient, Signer
from .config import ClientConfig
from .models import ChainProperties, StreamCursor
from .rpc import (
    AllNodesExhaustedError,
    BlockNotYetProducedError,
    NodeClient,
    RPCError,
    SubmissionRateLimitedError,
    TransactionSemanticError,
    TransportError,
)
from .streaming import JsonFileStateStore, MemoryStateStore, StreamHandlers, StreamState
from .submission import SubmissionCancelledError, SubmissionQueue

__all__ = [
    "HiveClient",
    "Signer",
    "ClientConfig",
    "ChainProperties",
    "StreamCursor",
    "AllNodesExhaustedError",
    "BlockNotYetProducedError",
    "NodeClient",
    "RPCError",
    "SubmissionRateLimitedError",
    "TransactionSemanticError",
    "TransportError",
    "JsonFileStateStore",
    "MemoryStateStore",
    "StreamHandlers",
    "StreamState",
    "SubmissionCancelledError",
    "SubmissionQueue",
]
