"""
Caller-supplied stream handlers and the error boundary around them.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger()


@dataclass
class StreamHandlers:
    """
    Optional callbacks fired by the streamer. Plain functions or coroutine
    functions both work.

    on_block(block_number, block, head_block_number)
    on_operation(operation, block_number, block_id, previous_block_id,
                 transaction_id, block_time, operation_index)
    on_virtual_operation(virtual_op, block_number)
    on_behind_blocks(gap)
    """
    on_block: Optional[Callable[..., Any]] = None
    on_operation: Optional[Callable[..., Any]] = None
    on_virtual_operation: Optional[Callable[..., Any]] = None
    on_behind_blocks: Optional[Callable[..., Any]] = None


async def invoke_handler(name: str, handler: Optional[Callable[..., Any]], *args: Any, **context: Any) -> bool:
    """
    Call a handler, swallowing and logging anything it raises.

    One broken handler must not stall the stream. Returns False if the
    handler raised.
    """
    if handler is None:
        return True

    try:
        result = handler(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(
            "Error in stream handler",
            handler=name,
            error=str(e),
            exc_info=True,
            **context,
        )
        return False

    return True
