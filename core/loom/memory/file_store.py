"""
File-backed memory gateway.

Directory structure:
    {root}/
        {scope}/
            {subject}/
                {concept}.json    # MemoryRecord
"""

import asyncio
import logging
import shutil
from pathlib import Path

from pydantic import ValidationError

from loom.memory.gateway import MemoryGateway, MemoryNotFound, MemoryRecord, MemoryScope
from loom.utils.io import atomic_write

logger = logging.getLogger(__name__)

_DANGEROUS_CHARS = {"<", ">", "|", "&", "$", "`", "'", '"', ":", "*", "?"}


def validate_key(key: str) -> None:
    """
    Validate one path component of a record address.

    Raises:
        ValueError: If the key is empty or could escape the memory directory
    """
    if not key or key.strip() == "":
        raise ValueError("Key cannot be empty")

    if "/" in key or "\\" in key:
        raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")

    if ".." in key or key.startswith("."):
        raise ValueError(f"Invalid key format: path traversal detected in '{key}'")

    if "\x00" in key:
        raise ValueError("Invalid key format: null bytes not allowed")

    if any(char in key for char in _DANGEROUS_CHARS):
        raise ValueError(f"Invalid key format: contains dangerous characters in '{key}'")


class FileMemoryGateway(MemoryGateway):
    """
    Stores one JSON file per record under `root`.

    Records survive process restarts, so a save in one run is visible to a
    load in a later run using a different gateway instance on the same root.
    Blocking file I/O runs in a worker thread.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _record_path(self, concept: str, subject: str, scope: MemoryScope) -> Path:
        scope_value = MemoryScope(scope).value
        for key in (concept, subject):
            validate_key(key)
        return self.root / scope_value / subject / f"{concept}.json"

    async def load(self, concept: str, subject: str, scope: MemoryScope) -> str:
        path = self._record_path(concept, subject, scope)

        def _read() -> MemoryRecord | None:
            if not path.exists():
                return None
            return MemoryRecord.model_validate_json(path.read_text(encoding="utf-8"))

        try:
            record = await asyncio.to_thread(_read)
        except (ValidationError, UnicodeDecodeError) as e:
            logger.error(f"Corrupt memory record at {path}: {e}")
            raise MemoryNotFound(concept, subject, scope) from e

        if record is None:
            raise MemoryNotFound(concept, subject, scope)
        return record.content

    async def save(self, concept: str, subject: str, scope: MemoryScope, content: str) -> None:
        path = self._record_path(concept, subject, scope)
        record = MemoryRecord(
            concept=concept, subject=subject, scope=MemoryScope(scope), content=content
        )

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with atomic_write(path) as f:
                f.write(record.model_dump_json(indent=2))

        await asyncio.to_thread(_write)
        logger.debug(f"Saved memory {concept}/{subject} ({record.scope}) to {path}")

    async def clear(self) -> bool:
        """Delete every record under the root. Returns True if anything was removed."""

        def _clear() -> bool:
            if not self.root.exists():
                return False
            shutil.rmtree(self.root)
            return True

        removed = await asyncio.to_thread(_clear)
        if removed:
            logger.info(f"Cleared memory directory {self.root}")
        return removed
