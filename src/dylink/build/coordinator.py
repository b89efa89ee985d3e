"""Unique-name compile coordinator.

Reload-eligible modules that need a rebuild are compiled under a
time-qualified identity ``{name}_{token}`` so a fresh build never shares an
identity with an instance already resident from an earlier reload. The
artifacts are always stored under the original name, and the identities are
reverted once the batch has compiled.

Phases:
1. Rename stale reload-eligible build units (unique_compile only)
2. Compile the whole batch once
3. Encrypt outputs into the artifact store; record compile ticks
4. Revert renames, recompile if anything was reverted, drop temporary outputs
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from dylink.artifacts.store import SecureArtifactStore
from dylink.build.compiler import CompileOptions, CompilerInterface
from dylink.build.staleness import StalenessDetector
from dylink.build.unit import BuildUnit, qualified_name
from dylink.config import Settings
from dylink.db.records import LIBRARY_TICK_KEY, PENDING_UNIT_NAMESPACE, RecordStore, record_key
from dylink.domain import CompileRecord
from dylink.errors import BuildUnitError, CompileFailed
from dylink.events import EventBus, EventType, emit_optional
from dylink.registry import ModuleRegistry, all_of, reloadable, tutorial_filter

logger = logging.getLogger(__name__)


@dataclass
class CompileReport:
    """Outcome of one compile pass."""

    token: int
    rebuilt: list[str] = field(default_factory=list)
    renamed: list[str] = field(default_factory=list)
    written: list[str] = field(default_factory=list)
    reverted: list[str] = field(default_factory=list)
    recompiled: bool = False


class CompileCoordinator:
    """Drives compile batches and keeps build-unit identities consistent."""

    def __init__(
        self,
        registry: ModuleRegistry,
        staleness: StalenessDetector,
        store: SecureArtifactStore,
        records: RecordStore,
        compiler: CompilerInterface,
        settings: Settings,
        event_bus: EventBus | None = None,
        on_compiled: Callable[[CompileReport], Awaitable[None]] | None = None,
    ):
        self.registry = registry
        self.staleness = staleness
        self.store = store
        self.records = records
        self.compiler = compiler
        self.settings = settings
        self.event_bus = event_bus
        self.on_compiled = on_compiled
        self._last_token = 0

    def _next_token(self) -> int:
        token = time.time_ns()
        if token <= self._last_token:
            token = self._last_token + 1
        self._last_token = token
        return token

    def _unit(self, name: str) -> BuildUnit:
        return BuildUnit(self.settings.source_root / name, name)

    @property
    def output_dir(self) -> Path:
        return self.settings.build_output_dir

    # Rename / revert

    async def rename_unit(self, name: str, token: int) -> bool:
        """Rewrite a build unit to its time-qualified identity.

        The pending-rename record is saved before the unit file changes, so a
        renamed file always has a record to revert from. The record is
        dropped again if the rewrite fails or finds nothing to rename.

        Returns:
            True if the unit was renamed.
        """
        unit = self._unit(name)
        key = record_key(PENDING_UNIT_NAMESPACE, name)
        if await self.records.get(key):
            logger.debug(f"Build unit for {name} already has a pending rename")
            return False

        qualified = qualified_name(name, token)
        await self.records.set(key, qualified)
        try:
            renamed = unit.rewrite(name, qualified)
        except BaseException:
            await self.records.delete(key)
            raise
        if not renamed:
            await self.records.delete(key)
            logger.debug(f"Build unit for {name} not renamed (missing or already qualified)")
            return False

        logger.info(f"Renamed build unit {name} -> {qualified}")
        return True

    async def revert_unit(self, name: str) -> bool:
        """Restore a build unit to its original identity.

        Returns:
            True if the unit file changed.
        """
        key = record_key(PENDING_UNIT_NAMESPACE, name)
        qualified = await self.records.get(key)
        changed = False
        if qualified:
            changed = self._unit(name).rewrite(str(qualified), name)
        await self.records.delete(key)
        if changed:
            logger.info(f"Reverted build unit {qualified} -> {name}")
        return changed

    async def _revert_units(self, names: list[str]) -> list[str]:
        return [name for name in names if await self.revert_unit(name)]

    async def pending_units(self) -> dict[str, str]:
        """Build units still renamed from an earlier pass, name -> identity."""
        prefix = f"{PENDING_UNIT_NAMESPACE}."
        pending = {}
        for key in await self.records.keys(PENDING_UNIT_NAMESPACE):
            pending[key[len(prefix):]] = await self.records.get_str(key)
        return pending

    async def _reconcile_pending(self) -> dict[str, str]:
        """Pending renames whose build unit really carries the recorded identity.

        A record left by a rename that never reached the unit file is dropped.
        """
        pending = await self.pending_units()
        for name, qualified in list(pending.items()):
            try:
                current = self._unit(name).identity()
            except BuildUnitError:
                current = None
            if current != qualified:
                await self.records.delete(record_key(PENDING_UNIT_NAMESPACE, name))
                del pending[name]
                logger.warning(f"Dropped stale pending rename {name} -> {qualified} (unit is {current})")
        return pending

    async def recover(self) -> list[str]:
        """Revert any build unit left renamed by an interrupted compile."""
        reverted = await self._revert_units(list(await self.pending_units()))
        if reverted:
            logger.warning(f"Recovered {len(reverted)} renamed build units: {reverted}")
        return reverted

    # Compile phases

    async def _run_compiler(self, modules: list[str]) -> None:
        label = modules[0] if modules else "<batch>"
        options = CompileOptions(development=self.settings.development)
        try:
            ok = await self.compiler.compile(self.output_dir, list(self.settings.extra_defines), options)
        except Exception as e:
            raise CompileFailed(label, e, modules) from e
        if not ok:
            raise CompileFailed(label, f"{self.compiler.name} compiler reported failure", modules)

    def _write_artifacts(self, names: list[str], identities: dict[str, str], rebuilt: list[str]) -> list[str]:
        written = []
        for name in names:
            identity = identities.get(name, name)
            bin_path = self.output_dir / f"{identity}.bin"
            sym_path = self.output_dir / f"{identity}.sym"
            if not bin_path.exists() or not sym_path.exists():
                if name in rebuilt:
                    logger.warning(f"No compiled output for rebuilt module {name} (expected {identity}.bin)")
                else:
                    logger.debug(f"No compiled output for {name}, skipping")
                continue
            self.store.write(name, bin_path.read_bytes(), sym_path.read_bytes())
            written.append(name)
        return written

    async def _record_ticks(self, eligible: list[str]) -> None:
        for name in eligible:
            if self.store.exists(name):
                await self.records.save_compile_record(
                    CompileRecord(name=name, last_compile_tick=self.store.artifact_mtime(name))
                )
        await self.records.set(LIBRARY_TICK_KEY, self.store.newest_mtime())

    def _delete_temporary_outputs(self, identities: list[str]) -> None:
        for identity in identities:
            for path in self.output_dir.glob(f"{identity}.*"):
                path.unlink(missing_ok=True)
                logger.debug(f"Deleted temporary output {path.name}")

    async def compile(self) -> CompileReport:
        """Run one full compile pass.

        Build units still renamed by an earlier failed pass are compiled under
        their existing identity and reverted once this pass succeeds.

        Raises:
            CompileFailed: If the compiler fails. Renamed build units are left
                renamed for diagnosis; re-run compile() to retry.
        """
        token = self._next_token()
        mode = tutorial_filter(self.settings.tutorial_mode)
        names = self.registry.all_modules(mode)
        eligible = self.registry.all_modules(all_of(reloadable, mode))

        report = CompileReport(token=token)
        report.rebuilt = [n for n in eligible if await self.staleness.needs_rebuild(n)]
        identities = await self._reconcile_pending()
        await emit_optional(self.event_bus, EventType.COMPILE_STARTED, {"token": token, "rebuilt": report.rebuilt})

        # Phase 1 + 2: a rename must never outlive its compile attempt
        try:
            if self.settings.unique_compile:
                for name in report.rebuilt:
                    if name not in identities and await self.rename_unit(name, token):
                        report.renamed.append(name)
                        identities[name] = qualified_name(name, token)
            await self._run_compiler(report.rebuilt or names)
        except CompileFailed as e:
            logger.error(f"{e}; renamed build units left in place: {sorted(identities)}")
            await emit_optional(
                self.event_bus,
                EventType.COMPILE_FAILED,
                {"token": token, "error": str(e), "renamed": sorted(identities)},
            )
            raise
        except (Exception, asyncio.CancelledError):
            await self._revert_units(report.renamed)
            raise

        try:
            # Phase 3
            report.written = self._write_artifacts(names, identities, report.rebuilt)
            await self._record_ticks(eligible)
            for name in report.written:
                await emit_optional(self.event_bus, EventType.ARTIFACT_WRITTEN, module=name)
            logger.info(f"Compiled {len(names)} modules, stored {len(report.written)} artifacts")

            if self.on_compiled is not None:
                await self.on_compiled(report)
        finally:
            # Phase 4
            report.reverted = await self._revert_units(list(identities))

        if report.reverted:
            await self._run_compiler(report.reverted)
            self._delete_temporary_outputs([identities[name] for name in report.reverted])
            report.recompiled = True

        await emit_optional(
            self.event_bus,
            EventType.COMPILE_COMPLETED,
            {"token": token, "written": report.written, "recompiled": report.recompiled},
        )
        return report

    async def compile_if_stale(self) -> CompileReport | None:
        """Compile only when the library as a whole is out of date."""
        if not await self.staleness.library_needs_rebuild():
            logger.debug("Library up to date, skipping compile")
            return None
        return await self.compile()
