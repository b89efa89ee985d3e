"""Loaded-module table."""

from collections.abc import Iterator
from types import ModuleType


class LoadedModuleTable:
    """Name -> live handle, in the order modules were inserted.

    Single writer: the load orchestrator during start-up and the reloader
    afterwards. Readers may look names up at any time; a lookup during a
    reload sees either the old or the new handle. Take a ``snapshot()`` for a
    consistent view.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ModuleType] = {}

    def get(self, name: str) -> ModuleType | None:
        return self._entries.get(name)

    def __getitem__(self, name: str) -> ModuleType:
        return self._entries[name]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def names(self) -> list[str]:
        return list(self._entries)

    def snapshot(self) -> dict[str, ModuleType]:
        return dict(self._entries)

    def insert(self, name: str, handle: ModuleType) -> None:
        if name in self._entries:
            raise KeyError(f"Module '{name}' already loaded")
        self._entries[name] = handle

    def replace(self, name: str, handle: ModuleType) -> ModuleType:
        """Swap the handle for an already loaded name, keeping its position."""
        if name not in self._entries:
            raise KeyError(f"Module '{name}' is not loaded")
        previous = self._entries[name]
        self._entries[name] = handle
        return previous

    def clear(self) -> None:
        self._entries.clear()
