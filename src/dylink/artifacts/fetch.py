"""Byte-blob fetch collaborators used by artifact reads."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class Fetcher(ABC):
    """Fetches a byte blob by path. Implementations must be safe to run concurrently."""

    @abstractmethod
    async def fetch(self, path: Path) -> bytes:
        """Return the blob at path.

        Raises:
            FileNotFoundError: If nothing exists at path.
        """

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(path.exists)


class FileFetcher(Fetcher):
    """Reads blobs from the local filesystem on a worker thread."""

    async def fetch(self, path: Path) -> bytes:
        data = await asyncio.to_thread(path.read_bytes)
        logger.debug(f"Fetched {len(data)} bytes from {path}")
        return data
