"""
Cursor persistence so streaming resumes where it stopped.
"""

import os
from pathlib import Path
from typing import Optional, Protocol

import orjson
import structlog

from ..models import StreamCursor

logger = structlog.get_logger()


class StateStore(Protocol):
    async def load(self) -> Optional[StreamCursor]:
        ...

    async def save(self, cursor: StreamCursor) -> None:
        ...


class MemoryStateStore:
    """Keeps the cursor in process. Used when no state file is configured."""

    def __init__(self, cursor: Optional[StreamCursor] = None):
        self._cursor = cursor
        self.saves = 0

    async def load(self) -> Optional[StreamCursor]:
        if self._cursor is None:
            return None
        return self._cursor.model_copy()

    async def save(self, cursor: StreamCursor) -> None:
        self._cursor = cursor.model_copy()
        self.saves += 1


class JsonFileStateStore:
    """
    Cursor stored in a JSON file under `key`.

    Several streams may share one file with different keys. Also reads the
    older single-stream layout, `{"last_block": n}`.
    """

    def __init__(self, state_file: Path, key: str = "default"):
        self.state_file = Path(state_file)
        self.key = key

    def _read_document(self) -> dict:
        if not self.state_file.exists():
            return {}
        with open(self.state_file, "rb") as f:
            raw = f.read()
        if not raw.strip():
            return {}
        document = orjson.loads(raw)
        if not isinstance(document, dict):
            raise ValueError(f"Unexpected state file layout in {self.state_file}")
        return document

    async def load(self) -> Optional[StreamCursor]:
        document = self._read_document()

        entry = document.get(self.key)
        if isinstance(entry, dict):
            cursor = StreamCursor.model_validate(entry)
        elif isinstance(document.get("last_block"), int):
            cursor = StreamCursor(last_block=document["last_block"])
        else:
            return None

        logger.info(
            "Restored saved state",
            state_file=str(self.state_file),
            key=self.key,
            last_block=cursor.last_block,
            last_virtual_op_block=cursor.last_virtual_op_block,
        )
        return cursor

    async def save(self, cursor: StreamCursor) -> None:
        try:
            document = self._read_document()
        except ValueError as e:
            # orjson.JSONDecodeError is a ValueError
            logger.warning(
                "Unreadable state file, overwriting",
                state_file=str(self.state_file),
                error=str(e),
            )
            document = {}
        document.pop("last_block", None)
        document[self.key] = cursor.model_dump()

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.state_file.with_name(self.state_file.name + ".tmp")
        with open(tmp, "wb") as f:
            f.write(orjson.dumps(document, option=orjson.OPT_INDENT_2))
        os.replace(tmp, self.state_file)
