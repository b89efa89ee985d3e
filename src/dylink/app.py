"""Application launcher.

Wires the registry, record store, compile pipeline, load orchestrator and
reloader together for one process.

Start-up:
1. Connect the record store
2. Populate the registry from the manifest
3. Compile when auto-compile is on and the library is stale
4. Load every active module
5. Notify the entry module (on_modules_loaded, then start)
"""

import logging
from types import TracebackType

from dylink.artifacts import Fetcher, SecureArtifactStore
from dylink.build import (
    BytecodeCompiler,
    CommandCompiler,
    CompileCoordinator,
    CompileReport,
    CompilerInterface,
    StalenessDetector,
)
from dylink.config import Settings
from dylink.db import Database, RecordStore
from dylink.domain import LoadState
from dylink.errors import CompileFailed, EntryModuleUnresolved
from dylink.events import EventBus, EventType, emit_optional
from dylink.registry import Manifest, ModuleRegistry, load_manifest, populate_registry
from dylink.reload import ModuleReloader, ReloadResult, SourceChange, SourceWatcher
from dylink.runtime import BundleLoader, EntryPoint, LoadedModuleTable, LoadOrchestrator, ModuleLoader

logger = logging.getLogger(__name__)


def create_compiler(settings: Settings) -> CompilerInterface:
    """Command compiler when one is configured, in-process bytecode otherwise."""
    if settings.compile_command:
        return CommandCompiler(settings.compile_command, cwd=settings.source_root.parent)
    return BytecodeCompiler(settings.source_root)


class Application:
    """One process worth of module loading and reloading."""

    def __init__(
        self,
        settings: Settings,
        compiler: CompilerInterface | None = None,
        fetcher: Fetcher | None = None,
        loader: ModuleLoader | None = None,
        event_bus: EventBus | None = None,
    ):
        self.settings = settings
        self.event_bus = event_bus

        self.db = Database(settings.database_path)
        self.records = RecordStore(self.db)
        self.registry = ModuleRegistry()
        self.store = SecureArtifactStore(settings.library_dir, fetcher)
        self.staleness = StalenessDetector(self.registry, self.records, self.store, settings.source_root)
        self.compiler = compiler or create_compiler(settings)
        self.coordinator = CompileCoordinator(
            self.registry,
            self.staleness,
            self.store,
            self.records,
            self.compiler,
            settings,
            event_bus=event_bus,
        )

        self.table = LoadedModuleTable()
        self.loader = loader or BundleLoader([settings.source_root])
        self.orchestrator = LoadOrchestrator(
            self.registry, self.store, self.loader, settings, self.table, event_bus
        )
        self.reloader = ModuleReloader(self.orchestrator)
        self.entry = EntryPoint(self.registry, self.table)

        self.manifest: Manifest | None = None
        self._opened = False

    async def open(self) -> None:
        """Connect the record store and populate the registry. Idempotent."""
        if self._opened:
            return
        await self.db.connect()
        self.manifest = load_manifest(self.settings.manifest_path)
        populate_registry(self.registry, self.manifest)
        self._opened = True

    async def start(self) -> LoadedModuleTable:
        """Load all modules and hand control to the entry module.

        Raises:
            CompileFailed: If auto-compile is on and the compile fails.
            LoadIncomplete: If any active module could not be loaded.
            ConfigError: If the start environment cannot be built.
        """
        await self.open()

        if self.settings.auto_compile and not self.settings.live_mode:
            report = await self.coordinator.compile_if_stale()
            if report is not None:
                logger.info(f"Auto-compile stored {len(report.written)} artifacts")

        table = await self.orchestrator.load_all()
        environment = self.settings.environment(self.manifest.variables_dict() if self.manifest else None)

        try:
            await self.entry.notify_loaded(is_reload=False)
            await self.entry.start(environment)
        except EntryModuleUnresolved as e:
            logger.warning(f"Entry module not notified: {e}")
            await emit_optional(self.event_bus, EventType.ENTRY_UNRESOLVED, {"reason": e.reason}, e.name)

        return table

    async def compile(self) -> CompileReport:
        await self.open()
        return await self.coordinator.compile()

    async def compile_and_reload(self) -> ReloadResult | None:
        """Compile, then reload if modules are already loaded.

        Raises:
            CompileFailed: If the compile fails. Nothing is reloaded.
        """
        await self.compile()
        if self.reloader.in_progress:
            logger.warning("Reload already running, skipping")
            return None
        if self.orchestrator.state != LoadState.READY:
            return None
        return await self.reloader.reload()

    async def on_source_changes(self, changes: list[SourceChange]) -> None:
        names = sorted({c.path.name for c in changes})
        logger.info(f"Source changes: {names}")
        try:
            await self.compile_and_reload()
        except CompileFailed as e:
            logger.error(f"Compile failed, keeping current modules: {e}")

    def create_watcher(self) -> SourceWatcher:
        dirs = [self.staleness.source_dir(name) for name in self.registry.all_modules()]
        return SourceWatcher(dirs)

    async def watch(self, poll_interval: float = 2.0, debounce_seconds: float = 1.0) -> None:
        """Compile and reload on source changes until cancelled."""
        await self.create_watcher().watch_loop(
            self.on_source_changes, poll_interval=poll_interval, debounce_seconds=debounce_seconds
        )

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
        self.registry.clear()
        await self.db.disconnect()
        self._opened = False
        logger.info("Application shut down")

    async def __aenter__(self) -> "Application":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()
