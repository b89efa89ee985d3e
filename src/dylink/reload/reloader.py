"""Runtime hot-reload of reload-eligible modules.

Handles:
- Fetching the latest artifact pair of every eligible module
- Swapping handles in the loaded-module table in place
- Notifying the entry module (loaded, then reload)

Flow:
1. Resolve the reload-eligible set under the current mode flags
2. Fetch and decrypt every pair; any failure aborts before the table changes
3. Instantiate every new handle, then replace entries one at a time
4. Call on_modules_loaded(table, True) then reload(reason) on the entry module
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import ModuleType

from dylink.artifacts.store import SecureArtifactStore
from dylink.domain import ReloadReason
from dylink.errors import BatchFetchError, EntryModuleUnresolved, LoadIncomplete, ReloadInProgress
from dylink.events import EventBus, EventType, emit_optional
from dylink.registry import all_of, reloadable, tutorial_filter
from dylink.runtime.entry import EntryPoint
from dylink.runtime.orchestrator import LoadOrchestrator

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


class ReloadStatus(Enum):
    """Status of a reload operation."""

    SUCCESS = "success"
    FAILED_FETCH = "failed_fetch"
    FAILED_LOAD = "failed_load"
    NOTIFY_FAILED = "notify_failed"


@dataclass
class ReloadResult:
    """Result of a reload operation."""

    status: ReloadStatus
    reason: ReloadReason
    reloaded_modules: list[str] = field(default_factory=list)
    error_message: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def table_updated(self) -> bool:
        return self.status in (ReloadStatus.SUCCESS, ReloadStatus.NOTIFY_FAILED)


class ModuleReloader:
    """Replaces reload-eligible modules in a running process.

    Only legal once the load orchestrator is ready. Non-eligible entries are
    never touched, so their handles stay identical across reloads.
    """

    def __init__(
        self,
        orchestrator: LoadOrchestrator,
        store: SecureArtifactStore | None = None,
        event_bus: EventBus | None = None,
    ):
        self.orchestrator = orchestrator
        self.registry = orchestrator.registry
        self.store = store or orchestrator.store
        self.loader = orchestrator.loader
        self.table = orchestrator.table
        self.entry = EntryPoint(self.registry, self.table)
        self.event_bus = event_bus if event_bus is not None else orchestrator.event_bus

        self._in_progress = False
        self._reload_history: deque[ReloadResult] = deque(maxlen=HISTORY_LIMIT)

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def eligible_modules(self) -> list[str]:
        mode = tutorial_filter(self.orchestrator.settings.tutorial_mode)
        return self.registry.all_modules(all_of(reloadable, mode))

    def _record(self, result: ReloadResult) -> ReloadResult:
        self._reload_history.append(result)
        return result

    async def _fail(self, result: ReloadResult) -> ReloadResult:
        logger.error(f"Reload aborted ({result.status.value}): {result.error_message}")
        await emit_optional(
            self.event_bus,
            EventType.RELOAD_FAILED,
            {"status": result.status.value, "error": result.error_message},
        )
        return self._record(result)

    async def _notify(self, reason: ReloadReason, result: ReloadResult) -> ReloadResult:
        try:
            await self.entry.notify_loaded(is_reload=True)
            await self.entry.notify_reload(reason)
        except EntryModuleUnresolved as e:
            # The new handles are installed; only the application hook did not run
            logger.warning(f"Reload notification skipped: {e}")
            result.status = ReloadStatus.NOTIFY_FAILED
            result.error_message = str(e)
            await emit_optional(self.event_bus, EventType.ENTRY_UNRESOLVED, {"reason": e.reason}, e.name)
        except Exception as e:
            logger.error(f"Entry module hook failed during reload: {type(e).__name__}: {e}")
            result.status = ReloadStatus.NOTIFY_FAILED
            result.error_message = f"{type(e).__name__}: {e}"
        return result

    async def reload(self, reason: ReloadReason = ReloadReason.FULL) -> ReloadResult:
        """Reload every eligible module from the artifact store.

        Fetch and instantiate failures abort the reload with the table
        untouched and are reported in the result.

        Raises:
            InvalidStateError: If the orchestrator is not ready.
            ReloadInProgress: If another reload is still running.
        """
        self.orchestrator.require_ready("reload")
        if self._in_progress:
            raise ReloadInProgress()

        self._in_progress = True
        try:
            return await self._reload(reason)
        finally:
            self._in_progress = False

    async def _reload(self, reason: ReloadReason) -> ReloadResult:
        names = [n for n in self.eligible_modules() if n in self.table]
        logger.info(f"Reloading {len(names)} modules (reason={reason.name.lower()})")
        await emit_optional(self.event_bus, EventType.RELOAD_STARTED, {"modules": names, "reason": int(reason)})

        try:
            pairs = await self.store.read_many(names)
        except BatchFetchError as e:
            return await self._fail(
                ReloadResult(status=ReloadStatus.FAILED_FETCH, reason=reason, error_message=str(e))
            )

        staged: dict[str, ModuleType] = {}
        try:
            for name in names:
                pair = pairs[name]
                staged[name] = self.loader.load_bytes(
                    name, pair.binary, pair.symbols, peers={**self.table.snapshot(), **staged}
                )
        except LoadIncomplete as e:
            return await self._fail(
                ReloadResult(status=ReloadStatus.FAILED_LOAD, reason=reason, error_message=str(e))
            )

        for name, handle in staged.items():
            self.table.replace(name, handle)
            logger.info(f"Reloaded module: {name}")

        result = ReloadResult(status=ReloadStatus.SUCCESS, reason=reason, reloaded_modules=names)
        await self._notify(reason, result)

        await emit_optional(
            self.event_bus,
            EventType.RELOAD_COMPLETED,
            {"modules": names, "reason": int(reason), "status": result.status.value},
        )
        return self._record(result)

    async def reload_configuration(self) -> ReloadResult:
        """Run only the notification protocol with the configuration reason code.

        Raises:
            InvalidStateError: If the orchestrator is not ready.
            ReloadInProgress: If another reload is still running.
        """
        self.orchestrator.require_ready("reload configuration")
        if self._in_progress:
            raise ReloadInProgress()

        self._in_progress = True
        try:
            result = ReloadResult(status=ReloadStatus.SUCCESS, reason=ReloadReason.CONFIGURATION)
            await self._notify(ReloadReason.CONFIGURATION, result)
            return self._record(result)
        finally:
            self._in_progress = False

    def get_reload_history(self, limit: int = 10) -> list[ReloadResult]:
        """Most recent reload results, newest last."""
        return list(self._reload_history)[-limit:]

    def get_status(self) -> dict:
        last = self._reload_history[-1] if self._reload_history else None
        return {
            "state": self.orchestrator.state.value,
            "in_progress": self._in_progress,
            "eligible_modules": self.eligible_modules(),
            "total_reloads": len(self._reload_history),
            "last_reload": (
                {
                    "status": last.status.value,
                    "reason": int(last.reason),
                    "modules": last.reloaded_modules,
                    "timestamp": last.timestamp.isoformat(),
                }
                if last
                else None
            ),
        }
