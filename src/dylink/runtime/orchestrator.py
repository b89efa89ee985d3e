"""Load orchestrator.

State machine per process: uninitialized -> loading -> ready -> shutting_down.

Loading is a parallel fetch followed by a sequential instantiate:
1. Resolve the active module set from the registry
2. Fetch metadata-only blobs concurrently and register them
3. Fetch and decrypt every artifact pair concurrently
4. Instantiate and insert modules one at a time in registry order
5. Become ready only when every selected module is in the table
"""

import asyncio
import logging
from types import ModuleType

from dylink.artifacts.store import SecureArtifactStore
from dylink.config import Settings
from dylink.domain import ArtifactPair, LoadState, ModuleTag
from dylink.errors import BatchFetchError, InvalidStateError, LoadIncomplete
from dylink.events import EventBus, EventType, emit_optional
from dylink.registry import ModuleRegistry, tutorial_filter
from dylink.runtime.loader import ModuleLoader
from dylink.runtime.table import LoadedModuleTable

logger = logging.getLogger(__name__)


class LoadOrchestrator:
    """Loads the active module set into a LoadedModuleTable once per process."""

    def __init__(
        self,
        registry: ModuleRegistry,
        store: SecureArtifactStore,
        loader: ModuleLoader,
        settings: Settings,
        table: LoadedModuleTable | None = None,
        event_bus: EventBus | None = None,
    ):
        self.registry = registry
        self.store = store
        self.loader = loader
        self.settings = settings
        self.table = table if table is not None else LoadedModuleTable()
        self.event_bus = event_bus
        self._state = LoadState.UNINITIALIZED

    @property
    def state(self) -> LoadState:
        return self._state

    def active_modules(self) -> list[str]:
        """Names selected under the current mode flags, in registry order."""
        return self.registry.all_modules(tutorial_filter(self.settings.tutorial_mode))

    def uses_live_path(self, name: str) -> bool:
        if self.settings.live_mode:
            return True
        return self.registry.get(name).has_tag(ModuleTag.SHARED)

    def get_loaded(self, name: str) -> ModuleType | None:
        return self.table.get(name)

    async def _load_metadata(self) -> None:
        names = self.registry.metadata_modules()
        if not names or self.settings.live_mode:
            return

        results = await asyncio.gather(
            *(self.store.read_metadata(self.settings.metadata_dir, n) for n in names),
            return_exceptions=True,
        )
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                raise LoadIncomplete(name, result) from result
            self.loader.load_metadata(name, result)
        logger.info(f"Registered {len(names)} metadata modules")

    async def _fetch(self, names: list[str]) -> dict[str, ArtifactPair]:
        try:
            return await self.store.read_many(names)
        except BatchFetchError as e:
            raise LoadIncomplete(e.name, e.cause) from e

    def _instantiate(self, name: str, pair: ArtifactPair | None) -> ModuleType:
        if pair is None:
            return self.loader.load_live(name)
        return self.loader.load_bytes(name, pair.binary, pair.symbols, peers=self.table.snapshot())

    def _reset(self) -> None:
        self.table.clear()
        self._state = LoadState.UNINITIALIZED

    async def load_all(self) -> LoadedModuleTable:
        """Load every active module.

        Raises:
            InvalidStateError: If called more than once.
            LoadIncomplete: If any selected module could not be fetched or
                instantiated. The table is left empty.
        """
        if self._state != LoadState.UNINITIALIZED:
            raise InvalidStateError("load modules", self._state.value)

        self._state = LoadState.LOADING
        names = self.active_modules()
        logger.info(f"Loading {len(names)} modules")

        try:
            await self._load_metadata()

            fetch_names = [n for n in names if not self.uses_live_path(n)]
            pairs = await self._fetch(fetch_names)

            for name in names:
                handle = self._instantiate(name, pairs.get(name))
                self.table.insert(name, handle)
                logger.debug(f"Loaded {name}")

            missing = [n for n in names if n not in self.table]
            if missing:
                raise LoadIncomplete(missing[0], "not present after load")
        except LoadIncomplete as e:
            logger.error(f"Load failed: {e}")
            self._reset()
            raise
        except BaseException:
            self._reset()
            raise

        self._state = LoadState.READY
        logger.info(f"Loaded {len(self.table)} modules: {self.table.names()}")
        await emit_optional(self.event_bus, EventType.MODULES_LOADED, {"modules": self.table.names()})
        return self.table

    def require_ready(self, operation: str) -> None:
        if self._state != LoadState.READY:
            raise InvalidStateError(operation, self._state.value)

    async def shutdown(self) -> None:
        """Drop every loaded handle. Further loads are not allowed."""
        if self._state == LoadState.SHUTTING_DOWN:
            return
        self._state = LoadState.SHUTTING_DOWN
        count = len(self.table)
        self.table.clear()
        logger.info(f"Unloaded {count} modules")
