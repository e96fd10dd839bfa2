"""
Node selection and failover for calls against several RPC nodes.
"""

from .node_pool import Node, NodePool
from .executor import FailoverExecutor

__all__ = [
    "Node",
    "NodePool",
    "FailoverExecutor",
]
