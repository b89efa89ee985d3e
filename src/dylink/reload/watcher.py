"""Source change watching for compile-and-reload.

Polls registered module source directories and compares modification times
only; file contents are never read.
"""

import asyncio
import fnmatch
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from dylink.build.unit import UNIT_FILE

logger = logging.getLogger(__name__)


@dataclass
class SourceChange:
    """A detected source file change."""

    path: Path
    change_type: str  # "modified", "created", "deleted"
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class SourceWatcher:
    """Watches module source directories for changes.

    Build-unit files are ignored so the compile coordinator's own renames do
    not trigger a new pass.
    """

    def __init__(
        self,
        watch_dirs: list[str | Path],
        patterns: list[str] | None = None,
        ignore_dirs: list[str] | None = None,
    ):
        self.watch_dirs = [Path(d) for d in watch_dirs]
        self.patterns = patterns or ["*.py"]
        self.ignore_dirs = set(ignore_dirs or ["__pycache__", ".git", ".venv"])

        self._file_states: dict[Path, int] = {}  # path -> mtime_ns
        self._initialized = False

    def _matches(self, filename: str) -> bool:
        if filename == UNIT_FILE:
            return False
        return any(fnmatch.fnmatch(filename, p) for p in self.patterns)

    def _scan_files(self) -> dict[Path, int]:
        files: dict[Path, int] = {}

        for watch_dir in self.watch_dirs:
            if not watch_dir.exists():
                continue

            for dirpath, dirnames, filenames in os.walk(watch_dir):
                dirnames[:] = [d for d in dirnames if d not in self.ignore_dirs]
                for filename in filenames:
                    if not self._matches(filename):
                        continue
                    path = Path(dirpath) / filename
                    try:
                        files[path] = path.stat().st_mtime_ns
                    except OSError as e:
                        logger.debug(f"Error scanning {path}: {e}")

        return files

    def initialize(self) -> None:
        """Record the current state without reporting changes."""
        self._file_states = self._scan_files()
        self._initialized = True
        logger.info(f"SourceWatcher initialized with {len(self._file_states)} files")

    def detect_changes(self) -> list[SourceChange]:
        """Changes since the previous scan. The first call only initializes."""
        if not self._initialized:
            self.initialize()
            return []

        current = self._scan_files()
        changes: list[SourceChange] = []

        for path, mtime in current.items():
            previous = self._file_states.get(path)
            if previous is None:
                changes.append(SourceChange(path=path, change_type="created"))
            elif mtime != previous:
                changes.append(SourceChange(path=path, change_type="modified"))

        for path in self._file_states:
            if path not in current:
                changes.append(SourceChange(path=path, change_type="deleted"))

        self._file_states = current
        return changes

    async def watch_loop(
        self,
        callback: Callable[[list[SourceChange]], Awaitable[None]],
        poll_interval: float = 2.0,
        debounce_seconds: float = 1.0,
    ) -> None:
        """Poll until cancelled, handing settled batches of changes to callback.

        Args:
            callback: Async function called with the accumulated changes.
            poll_interval: Seconds between scans.
            debounce_seconds: Quiet period required before callback runs.
        """
        self.initialize()
        pending: list[SourceChange] = []
        last_change_time: datetime | None = None

        while True:
            changes = await asyncio.to_thread(self.detect_changes)

            if changes:
                pending.extend(changes)
                last_change_time = datetime.now(UTC)

            if (
                pending
                and last_change_time
                and (datetime.now(UTC) - last_change_time).total_seconds() >= debounce_seconds
            ):
                logger.info(f"Detected {len(pending)} source changes")
                try:
                    await callback(pending)
                except Exception as e:
                    logger.error(f"Change handler failed: {e}")
                pending = []
                last_change_time = None

            await asyncio.sleep(poll_interval)
