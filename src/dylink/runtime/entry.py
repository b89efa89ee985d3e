"""Entry-module notification protocol.

The entry module is the one registered with the ``entry`` tag. It exposes
plain or async functions:

    on_modules_loaded(table, is_reload)
    reload(reason)
    start(environment)        optional, called once after the initial load
"""

import asyncio
import logging
from types import ModuleType
from typing import Any

from dylink.domain import ReloadReason
from dylink.errors import EntryModuleUnresolved
from dylink.registry import ModuleRegistry
from dylink.runtime.table import LoadedModuleTable

logger = logging.getLogger(__name__)


class EntryPoint:
    """Resolves the entry module through the registry and calls into it."""

    def __init__(self, registry: ModuleRegistry, table: LoadedModuleTable):
        self.registry = registry
        self.table = table

    def resolve(self) -> tuple[str, ModuleType]:
        """Return the entry module name and its current handle.

        Raises:
            EntryModuleUnresolved: If no module is tagged entry or it is not loaded.
        """
        name = self.registry.entry_module()
        if name is None:
            raise EntryModuleUnresolved("no module is tagged entry")
        handle = self.table.get(name)
        if handle is None:
            raise EntryModuleUnresolved("entry module is not loaded", name)
        return name, handle

    async def _call(self, function: str, *args: Any, required: bool = True) -> None:
        name, handle = self.resolve()
        target = getattr(handle, function, None)
        if not callable(target):
            if required:
                raise EntryModuleUnresolved(f"'{name}' has no callable {function}()", name)
            logger.debug(f"Entry module {name} has no {function}(), skipping")
            return

        result = target(*args)
        if asyncio.iscoroutine(result):
            await result

    async def notify_loaded(self, is_reload: bool) -> None:
        await self._call("on_modules_loaded", self.table.snapshot(), is_reload)

    async def notify_reload(self, reason: ReloadReason) -> None:
        await self._call("reload", int(reason))

    async def start(self, environment: dict[str, str]) -> None:
        await self._call("start", dict(environment), required=False)
