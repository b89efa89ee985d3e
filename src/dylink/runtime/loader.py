"""Module loaders: turn bundle bytes or importable packages into handles.

Handles created from bundle bytes are fresh ``types.ModuleType`` objects that
are never left in ``sys.modules``, so a reloaded module and the instance it
replaces are always distinct objects.
"""

import importlib
import importlib.abc
import importlib.util
import json
import logging
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from types import ModuleType

from dylink.build.bundle import BundleEntry, unpack_bundle
from dylink.errors import LoadIncomplete

logger = logging.getLogger(__name__)


class ModuleLoader(ABC):
    """Abstract loader collaborator used by the load and reload orchestrators."""

    @abstractmethod
    def load_live(self, name: str) -> ModuleType:
        """Resolve a module through the default import path."""

    @abstractmethod
    def load_bytes(
        self,
        name: str,
        binary: bytes,
        symbols: bytes,
        peers: Mapping[str, ModuleType] | None = None,
    ) -> ModuleType:
        """Instantiate a new module handle from decrypted artifact bytes.

        peers are already-loaded handles the new module may import by name.
        """

    @abstractmethod
    def load_metadata(self, name: str, data: bytes) -> None:
        """Register a metadata-only blob."""


@contextmanager
def _scoped_modules(modules: Mapping[str, ModuleType]) -> Iterator[None]:
    # Imports inside a bundle resolve through sys.modules while its bodies
    # execute; previous entries are restored afterwards.
    saved = {name: sys.modules.get(name) for name in modules}
    sys.modules.update(modules)
    try:
        yield
    finally:
        for name, previous in saved.items():
            if previous is None:
                sys.modules.pop(name, None)
            else:
                sys.modules[name] = previous


def _peer_modules(peers: Mapping[str, ModuleType] | None) -> dict[str, ModuleType]:
    """Importable names for already-loaded handles, submodules included."""
    modules: dict[str, ModuleType] = {}
    for name, handle in (peers or {}).items():
        modules.update(getattr(handle, "__bundle_modules__", {}))
        modules[name] = handle
    return modules


class _BundleEntryLoader(importlib.abc.Loader):
    """Executes one pre-compiled code object into a module."""

    def __init__(self, entry: BundleEntry | None):
        self.entry = entry

    def create_module(self, spec):
        return None

    def exec_module(self, module: ModuleType) -> None:
        if self.entry is not None:
            exec(self.entry.code, module.__dict__)


class BundleLoader(ModuleLoader):
    """Loads bytecode bundles and live packages.

    Args:
        search_paths: Directories added to ``sys.path`` for live loads.
    """

    def __init__(self, search_paths: list[str | Path] | None = None):
        self.search_paths = [Path(p) for p in (search_paths or [])]
        self.metadata: dict[str, bytes] = {}

    def _ensure_search_paths(self) -> None:
        for path in self.search_paths:
            entry = str(path)
            if entry not in sys.path:
                sys.path.insert(0, entry)

    def load_live(self, name: str) -> ModuleType:
        self._ensure_search_paths()
        try:
            module = importlib.import_module(name)
        except Exception as e:
            raise LoadIncomplete(name, e) from e
        logger.debug(f"Loaded {name} from the import system")
        return module

    def _new_module(self, qualname: str, entry: BundleEntry | None, is_package: bool) -> ModuleType:
        origin = entry.code.co_filename if entry is not None else None
        spec = importlib.util.spec_from_loader(
            qualname, _BundleEntryLoader(entry), origin=origin, is_package=is_package
        )
        module = importlib.util.module_from_spec(spec)
        if origin is not None:
            module.__file__ = origin
        return module

    def load_bytes(
        self,
        name: str,
        binary: bytes,
        symbols: bytes,
        peers: Mapping[str, ModuleType] | None = None,
    ) -> ModuleType:
        """Execute a bundle into a new package object named ``name``.

        Raises:
            LoadIncomplete: If the bundle is malformed or a module body raises.
        """
        try:
            bundle = unpack_bundle(binary)
            symbol_info = json.loads(symbols.decode("utf-8")) if symbols else {}
        except (ValueError, UnicodeDecodeError) as e:
            raise LoadIncomplete(name, e) from e

        entries = {(f"{name}.{e.module}" if e.module else name): e for e in bundle.entries}
        modules: dict[str, ModuleType] = {}
        for qualname, entry in entries.items():
            is_package = qualname == name or entry.code.co_filename.endswith("__init__.py")
            modules[qualname] = self._new_module(qualname, entry, is_package)
        if name not in modules:
            modules[name] = self._new_module(name, None, is_package=True)

        for qualname, module in modules.items():
            module.__defines__ = bundle.defines  # type: ignore[attr-defined]
            parent_name, _, attr = qualname.rpartition(".")
            parent = modules.get(parent_name)
            if qualname != name and parent is not None:
                setattr(parent, attr, module)

        root = modules[name]
        root.__symbols__ = symbol_info  # type: ignore[attr-defined]
        root.__bundle_modules__ = dict(modules)  # type: ignore[attr-defined]

        visible = _peer_modules(peers)
        visible.update(modules)
        with _scoped_modules(visible):
            for entry in bundle.execution_order():
                qualname = f"{name}.{entry.module}" if entry.module else name
                module = modules[qualname]
                try:
                    module.__spec__.loader.exec_module(module)
                except Exception as e:
                    raise LoadIncomplete(name, f"{qualname}: {e}") from e

        logger.debug(f"Instantiated {name} from bundle {bundle.unit} ({len(bundle.entries)} modules)")
        return root

    def load_metadata(self, name: str, data: bytes) -> None:
        self.metadata[name] = data
        logger.debug(f"Registered metadata module {name} ({len(data)} bytes)")
