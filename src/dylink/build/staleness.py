"""Compile staleness detection from file metadata only."""

import fnmatch
import logging
import os
from pathlib import Path

from dylink.artifacts.store import SecureArtifactStore
from dylink.build.unit import UNIT_FILE
from dylink.db.records import LIBRARY_TICK_KEY, RecordStore
from dylink.domain import ModuleDescriptor
from dylink.registry import ModuleRegistry
from dylink.registry.predicates import Predicate

logger = logging.getLogger(__name__)


class StalenessDetector:
    """Decides whether modules need a rebuild.

    A module is stale when it was never compiled, when its recorded compile
    tick differs from the stored artifact's mtime (the artifact was touched
    outside this pipeline), or when any source file is newer than the tick.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        records: RecordStore,
        store: SecureArtifactStore,
        source_root: str | Path,
        patterns: list[str] | None = None,
        ignore_dirs: list[str] | None = None,
    ):
        self.registry = registry
        self.records = records
        self.store = store
        self.source_root = Path(source_root)
        self.patterns = patterns or ["*.py"]
        self.ignore_dirs = set(ignore_dirs or ["__pycache__", ".git", ".venv"])

    def source_dir(self, name: str) -> Path:
        return self.source_root / name

    def _matches(self, filename: str) -> bool:
        if filename == UNIT_FILE:
            return False
        return any(fnmatch.fnmatch(filename, p) for p in self.patterns)

    def newest_source_mtime(self, name: str) -> int:
        """Newest source mtime (ns) under the module's directory, 0 if none."""
        newest = 0
        for dirpath, dirnames, filenames in os.walk(self.source_dir(name)):
            dirnames[:] = [d for d in dirnames if d not in self.ignore_dirs]
            for filename in filenames:
                if not self._matches(filename):
                    continue
                try:
                    mtime = os.stat(os.path.join(dirpath, filename)).st_mtime_ns
                except OSError as e:
                    logger.debug(f"Error reading mtime of {filename}: {e}")
                    continue
                newest = max(newest, mtime)
        return newest

    async def needs_rebuild(self, module: ModuleDescriptor | str) -> bool:
        name = module if isinstance(module, str) else module.name
        record = await self.records.get_compile_record(name)
        if record is None:
            logger.debug(f"{name}: never compiled")
            return True

        artifact_mtime = self.store.artifact_mtime(name)
        if artifact_mtime != record.last_compile_tick:
            logger.debug(
                f"{name}: artifact mtime {artifact_mtime} != recorded {record.last_compile_tick}"
            )
            return True

        newest = self.newest_source_mtime(name)
        if newest > record.last_compile_tick:
            logger.debug(f"{name}: sources newer than last compile")
            return True

        return False

    async def stale_modules(self, predicate: Predicate | None = None) -> list[str]:
        return [
            info.name
            for info in self.registry.descriptors(predicate)
            if await self.needs_rebuild(info)
        ]

    async def library_needs_rebuild(self) -> bool:
        """Whole-library check used before start-up when auto-compile is on."""
        library_tick = await self.records.get_int(LIBRARY_TICK_KEY)
        if self.store.newest_mtime() != library_tick:
            return True

        newest_source = max(
            (self.newest_source_mtime(name) for name in self.registry.all_modules()),
            default=0,
        )
        return newest_source >= library_tick
