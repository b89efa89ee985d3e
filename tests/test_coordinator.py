"""Tests for the unique-name compile coordinator."""

import asyncio
import logging
from pathlib import Path

import pytest

from dylink.build import (
    UNIT_FILE,
    BuildUnit,
    BytecodeCompiler,
    CompileCoordinator,
    CompileOptions,
    CompilerInterface,
    StalenessDetector,
)
from dylink.build.bundle import unpack_bundle
from dylink.db.records import PENDING_UNIT_NAMESPACE, record_key
from dylink.domain import ModuleDescriptor, ModuleTag
from dylink.errors import CompileFailed
from dylink.events import EventBus, EventType


class RecordingCompiler(CompilerInterface):
    """Wraps the bytecode compiler and records build identities per call."""

    def __init__(self, source_root: Path, fail: bool = False, exc: BaseException | None = None):
        self.source_root = source_root
        self.inner = BytecodeCompiler(source_root)
        self.fail = fail
        self.exc = exc
        self.calls: list[dict[str, str]] = []

    @property
    def name(self) -> str:
        return "recording"

    async def compile(self, output_dir: Path, extra_defines: list[str], options: CompileOptions) -> bool:
        self.calls.append(
            {
                p.name: BuildUnit(p, p.name).identity()
                for p in sorted(self.source_root.iterdir())
                if (p / UNIT_FILE).exists()
            }
        )
        if self.exc is not None:
            raise self.exc
        if self.fail:
            return False
        return await self.inner.compile(output_dir, extra_defines, options)


@pytest.fixture
def modules(write_module) -> dict[str, Path]:
    return {
        "Kernel": write_module("Kernel", {"__init__.py": "NAME = 'kernel'\n"}),
        "Hotfix": write_module("Hotfix", {"__init__.py": "NAME = 'hotfix'\n"}),
    }


@pytest.fixture
def make_coordinator(registry, records, store, settings):
    def _make(compiler: CompilerInterface, **kwargs) -> CompileCoordinator:
        staleness = StalenessDetector(registry, records, store, settings.source_root)
        return CompileCoordinator(registry, staleness, store, records, compiler, settings, **kwargs)

    return _make


class TestCompile:
    """Tests for a full compile pass."""

    async def test_unique_compile_pass(self, modules, make_coordinator, store, settings):
        """Stale eligible units compile under a qualified identity and are reverted."""
        original = (modules["Hotfix"] / UNIT_FILE).read_bytes()
        compiler = RecordingCompiler(settings.source_root)
        coordinator = make_coordinator(compiler)

        report = await coordinator.compile()

        qualified = f"Hotfix_{report.token}"
        assert report.rebuilt == ["Hotfix"]
        assert report.renamed == ["Hotfix"]
        assert report.written == ["Kernel", "Hotfix"]
        assert report.reverted == ["Hotfix"]
        assert report.recompiled

        assert compiler.calls == [
            {"Hotfix": qualified, "Kernel": "Kernel"},
            {"Hotfix": "Hotfix", "Kernel": "Kernel"},
        ]
        assert (modules["Hotfix"] / UNIT_FILE).read_bytes() == original
        assert not list(settings.build_output_dir.glob(f"{qualified}.*"))
        assert await coordinator.pending_units() == {}

        # Stored under the distribution name, built under the qualified identity
        pair = await store.read("Hotfix")
        assert unpack_bundle(pair.binary).unit == qualified
        assert unpack_bundle((await store.read("Kernel")).binary).unit == "Kernel"

    async def test_records_compile_ticks(self, modules, make_coordinator, records, store, settings):
        coordinator = make_coordinator(RecordingCompiler(settings.source_root))

        await coordinator.compile()

        record = await records.get_compile_record("Hotfix")
        assert record is not None
        assert record.last_compile_tick == store.artifact_mtime("Hotfix")
        assert not await coordinator.staleness.needs_rebuild("Hotfix")
        assert await records.get_compile_record("Kernel") is None

    async def test_unique_compile_disabled(self, modules, make_coordinator, settings):
        settings.unique_compile = False
        compiler = RecordingCompiler(settings.source_root)
        coordinator = make_coordinator(compiler)

        report = await coordinator.compile()

        assert report.renamed == []
        assert not report.recompiled
        assert len(compiler.calls) == 1
        assert report.written == ["Kernel", "Hotfix"]

    async def test_tutorial_modules_skipped(self, registry, modules, write_module, make_coordinator, settings):
        registry.register_module(ModuleDescriptor(name="Intro", order=2, tags=frozenset({ModuleTag.TUTORIAL})))
        write_module("Intro")
        coordinator = make_coordinator(RecordingCompiler(settings.source_root))

        report = await coordinator.compile()

        assert "Intro" not in report.written

    async def test_on_compiled_runs_before_revert(self, modules, make_coordinator, settings):
        seen: list[str] = []

        async def on_compiled(report):
            seen.append(BuildUnit(modules["Hotfix"], "Hotfix").identity())

        coordinator = make_coordinator(RecordingCompiler(settings.source_root), on_compiled=on_compiled)
        report = await coordinator.compile()

        assert seen == [f"Hotfix_{report.token}"]

    async def test_events(self, modules, make_coordinator, settings):
        bus = EventBus()
        queue = await bus.subscribe("test")
        coordinator = make_coordinator(RecordingCompiler(settings.source_root), event_bus=bus)

        await coordinator.compile()

        types = []
        while not queue.empty():
            types.append(queue.get_nowait().type)
        assert types == [
            EventType.COMPILE_STARTED,
            EventType.ARTIFACT_WRITTEN,
            EventType.ARTIFACT_WRITTEN,
            EventType.COMPILE_COMPLETED,
        ]

    async def test_compile_if_stale(self, modules, make_coordinator, settings):
        coordinator = make_coordinator(RecordingCompiler(settings.source_root))

        assert await coordinator.compile_if_stale() is not None
        assert await coordinator.compile_if_stale() is None


class TestCompileFailure:
    """Tests for failure and cancellation semantics."""

    async def test_failure_leaves_rename_for_diagnosis(self, modules, make_coordinator, settings):
        bus = EventBus()
        queue = await bus.subscribe("test")
        coordinator = make_coordinator(RecordingCompiler(settings.source_root, fail=True), event_bus=bus)

        with pytest.raises(CompileFailed) as exc_info:
            await coordinator.compile()

        assert "Hotfix" in exc_info.value.modules
        pending = await coordinator.pending_units()
        assert list(pending) == ["Hotfix"]
        assert BuildUnit(modules["Hotfix"], "Hotfix").identity() == pending["Hotfix"]

        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        assert events[-1].type == EventType.COMPILE_FAILED
        assert events[-1].data["renamed"] == ["Hotfix"]

    async def test_recover_reverts_pending(self, modules, make_coordinator, settings):
        original = (modules["Hotfix"] / UNIT_FILE).read_bytes()
        coordinator = make_coordinator(RecordingCompiler(settings.source_root, fail=True))
        with pytest.raises(CompileFailed):
            await coordinator.compile()

        assert await coordinator.recover() == ["Hotfix"]
        assert (modules["Hotfix"] / UNIT_FILE).read_bytes() == original
        assert await coordinator.recover() == []

    async def test_retry_completes_pending_rename(self, modules, make_coordinator, settings, store):
        """A retry compiles under the earlier identity and then reverts it."""
        original = (modules["Hotfix"] / UNIT_FILE).read_bytes()
        failing = make_coordinator(RecordingCompiler(settings.source_root, fail=True))
        with pytest.raises(CompileFailed):
            await failing.compile()
        first_identity = (await failing.pending_units())["Hotfix"]

        compiler = RecordingCompiler(settings.source_root)
        report = await make_coordinator(compiler).compile()

        assert report.renamed == []
        assert report.reverted == ["Hotfix"]
        assert compiler.calls[0]["Hotfix"] == first_identity
        assert (modules["Hotfix"] / UNIT_FILE).read_bytes() == original
        assert unpack_bundle((await store.read("Hotfix")).binary).unit == first_identity
        assert not list(settings.build_output_dir.glob(f"{first_identity}.*"))

    async def test_cancellation_reverts_renames(self, modules, make_coordinator, settings):
        original = (modules["Hotfix"] / UNIT_FILE).read_bytes()
        coordinator = make_coordinator(RecordingCompiler(settings.source_root, exc=asyncio.CancelledError()))

        with pytest.raises(asyncio.CancelledError):
            await coordinator.compile()

        assert (modules["Hotfix"] / UNIT_FILE).read_bytes() == original
        assert await coordinator.pending_units() == {}

    async def test_compiler_exception_is_compile_failed(self, modules, make_coordinator, settings):
        coordinator = make_coordinator(RecordingCompiler(settings.source_root, exc=OSError("no compiler")))

        with pytest.raises(CompileFailed, match="no compiler"):
            await coordinator.compile()


class TestRename:
    """Tests for individual rename and revert operations."""

    async def test_rename_restores_file_when_record_fails(self, modules, make_coordinator, settings, records):
        original = (modules["Hotfix"] / UNIT_FILE).read_bytes()
        coordinator = make_coordinator(RecordingCompiler(settings.source_root))

        async def broken_set(key, value):
            raise RuntimeError("disk full")

        records.set = broken_set
        with pytest.raises(RuntimeError):
            await coordinator.rename_unit("Hotfix", 42)

        assert (modules["Hotfix"] / UNIT_FILE).read_bytes() == original

    async def test_rename_then_revert(self, modules, make_coordinator, settings):
        original = (modules["Hotfix"] / UNIT_FILE).read_bytes()
        coordinator = make_coordinator(RecordingCompiler(settings.source_root))

        assert await coordinator.rename_unit("Hotfix", 42)
        assert await coordinator.pending_units() == {"Hotfix": "Hotfix_42"}
        assert not await coordinator.rename_unit("Hotfix", 43)
        assert await coordinator.revert_unit("Hotfix")

        assert (modules["Hotfix"] / UNIT_FILE).read_bytes() == original
        assert not await coordinator.revert_unit("Hotfix")

    async def test_rename_drops_record_when_rewrite_fails(self, modules, make_coordinator, settings, monkeypatch):
        coordinator = make_coordinator(RecordingCompiler(settings.source_root))

        def broken_rewrite(self, from_name, to_name):
            raise OSError("read-only file system")

        monkeypatch.setattr(BuildUnit, "rewrite", broken_rewrite)
        with pytest.raises(OSError):
            await coordinator.rename_unit("Hotfix", 42)

        assert await coordinator.pending_units() == {}
        assert BuildUnit(modules["Hotfix"], "Hotfix").identity() == "Hotfix"

    async def test_rename_of_missing_unit_leaves_no_record(self, make_coordinator, settings):
        coordinator = make_coordinator(RecordingCompiler(settings.source_root))

        assert not await coordinator.rename_unit("Ghost", 42)
        assert await coordinator.pending_units() == {}

    async def test_compile_drops_record_without_rewrite(self, modules, make_coordinator, records, store, settings):
        """A record whose rename never reached the unit file does not block the build."""
        await records.set(record_key(PENDING_UNIT_NAMESPACE, "Hotfix"), "Hotfix_7")
        compiler = RecordingCompiler(settings.source_root)
        coordinator = make_coordinator(compiler)

        report = await coordinator.compile()

        assert report.renamed == ["Hotfix"]
        assert "Hotfix" in report.written
        assert compiler.calls[0]["Hotfix"] == f"Hotfix_{report.token}"
        assert unpack_bundle((await store.read("Hotfix")).binary).unit == f"Hotfix_{report.token}"
        assert await coordinator.pending_units() == {}

    async def test_recover_clears_record_without_rewrite(self, modules, make_coordinator, records, settings):
        original = (modules["Hotfix"] / UNIT_FILE).read_bytes()
        await records.set(record_key(PENDING_UNIT_NAMESPACE, "Hotfix"), "Hotfix_7")
        coordinator = make_coordinator(RecordingCompiler(settings.source_root))

        assert await coordinator.recover() == []
        assert await coordinator.pending_units() == {}
        assert (modules["Hotfix"] / UNIT_FILE).read_bytes() == original


class EmptyCompiler(RecordingCompiler):
    """Reports success without producing any output."""

    async def compile(self, output_dir: Path, extra_defines: list[str], options: CompileOptions) -> bool:
        self.calls.append({})
        return True


class TestMissingOutput:
    """Tests for rebuilt modules that produce no compiled output."""

    async def test_rebuilt_without_output_warns(self, modules, make_coordinator, settings, caplog):
        settings.unique_compile = False
        coordinator = make_coordinator(EmptyCompiler(settings.source_root))

        with caplog.at_level(logging.WARNING, logger="dylink.build.coordinator"):
            report = await coordinator.compile()

        assert report.rebuilt == ["Hotfix"]
        assert report.written == []
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert any("rebuilt module Hotfix" in message for message in warnings)
        assert not any("Kernel" in message for message in warnings)
