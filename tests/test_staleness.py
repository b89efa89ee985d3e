"""Tests for compile staleness detection."""

import os
from pathlib import Path

from dylink.artifacts import SecureArtifactStore
from dylink.build import StalenessDetector
from dylink.db import RecordStore
from dylink.db.records import LIBRARY_TICK_KEY
from dylink.domain import CompileRecord, ModuleTag
from dylink.registry import ModuleRegistry, has_tag

SECOND = 10**9


def _set_mtime(path: Path, ns: int) -> None:
    os.utime(path, ns=(ns, ns))


class TestNeedsRebuild:
    """Tests for StalenessDetector.needs_rebuild."""

    async def _compiled(self, name: str, store: SecureArtifactStore, records: RecordStore) -> int:
        store.write(name, b"binary", b"symbols")
        tick = store.artifact_mtime(name)
        await records.save_compile_record(CompileRecord(name=name, last_compile_tick=tick))
        return tick

    async def test_never_compiled(self, registry, records, store, settings, write_module):
        """An absent compile record always triggers a rebuild."""
        write_module("Hotfix")
        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert await detector.needs_rebuild("Hotfix")

    async def test_up_to_date(self, registry, records, store, settings, write_module):
        source_dir = write_module("Hotfix")
        tick = await self._compiled("Hotfix", store, records)
        _set_mtime(source_dir / "__init__.py", tick - SECOND)

        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert not await detector.needs_rebuild("Hotfix")
        assert not await detector.needs_rebuild(registry.get("Hotfix"))

    async def test_source_newer_than_compile(self, registry, records, store, settings, write_module):
        source_dir = write_module("Hotfix", {"__init__.py": "A = 1\n", "pkg/deep.py": "B = 2\n"})
        tick = await self._compiled("Hotfix", store, records)
        _set_mtime(source_dir / "__init__.py", tick - SECOND)
        _set_mtime(source_dir / "pkg" / "deep.py", tick + SECOND)

        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert await detector.needs_rebuild("Hotfix")

    async def test_artifact_touched_outside_pipeline(self, registry, records, store, settings, write_module):
        source_dir = write_module("Hotfix")
        tick = await self._compiled("Hotfix", store, records)
        _set_mtime(source_dir / "__init__.py", tick - SECOND)
        _set_mtime(store.binary_path("Hotfix"), tick + 5)

        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert await detector.needs_rebuild("Hotfix")

    async def test_artifact_deleted(self, registry, records, store, settings, write_module):
        source_dir = write_module("Hotfix")
        tick = await self._compiled("Hotfix", store, records)
        _set_mtime(source_dir / "__init__.py", tick - SECOND)
        store.binary_path("Hotfix").unlink()

        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert await detector.needs_rebuild("Hotfix")

    async def test_build_unit_and_caches_ignored(self, registry, records, store, settings, write_module):
        """Renaming the build unit never makes a module look stale."""
        source_dir = write_module("Hotfix")
        tick = await self._compiled("Hotfix", store, records)
        _set_mtime(source_dir / "__init__.py", tick - SECOND)
        _set_mtime(source_dir / "module.json", tick + SECOND)
        cache = source_dir / "__pycache__"
        cache.mkdir()
        (cache / "stray.py").write_text("")
        _set_mtime(cache / "stray.py", tick + SECOND)
        (source_dir / "README.md").write_text("docs")
        _set_mtime(source_dir / "README.md", tick + SECOND)

        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert not await detector.needs_rebuild("Hotfix")

    async def test_stale_modules(self, registry, records, store, settings, write_module):
        write_module("Kernel")
        source_dir = write_module("Hotfix")
        tick = await self._compiled("Hotfix", store, records)
        _set_mtime(source_dir / "__init__.py", tick - SECOND)

        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert await detector.stale_modules() == ["Kernel"]
        assert await detector.stale_modules(has_tag(ModuleTag.HOTFIX)) == []

    def test_newest_source_mtime_missing_dir(self, records, store, settings):
        detector = StalenessDetector(ModuleRegistry(), records, store, settings.source_root)
        assert detector.newest_source_mtime("Nothing") == 0


class TestLibraryNeedsRebuild:
    """Tests for the whole-library auto-compile check."""

    async def test_fresh_workspace(self, registry, records, store, settings, write_module):
        write_module("Kernel")
        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert await detector.library_needs_rebuild()

    async def test_up_to_date_then_source_change(self, registry, records, store, settings, write_module):
        kernel = write_module("Kernel")
        hotfix = write_module("Hotfix")
        store.write("Kernel", b"k", b"s")
        store.write("Hotfix", b"h", b"s")
        tick = store.newest_mtime()
        await records.set(LIBRARY_TICK_KEY, tick)
        _set_mtime(kernel / "__init__.py", tick - SECOND)
        _set_mtime(hotfix / "__init__.py", tick - SECOND)

        detector = StalenessDetector(registry, records, store, settings.source_root)
        assert not await detector.library_needs_rebuild()

        _set_mtime(hotfix / "__init__.py", tick + SECOND)
        assert await detector.library_needs_rebuild()

    async def test_library_changed_outside_pipeline(self, registry, records, store, settings, write_module):
        kernel = write_module("Kernel")
        store.write("Kernel", b"k", b"s")
        tick = store.newest_mtime()
        await records.set(LIBRARY_TICK_KEY, tick)
        _set_mtime(kernel / "__init__.py", tick - SECOND)
        _set_mtime(store.symbol_path("Kernel"), tick + SECOND)

        detector = StalenessDetector(registry, records, store, settings.source_root)

        assert await detector.library_needs_rebuild()
