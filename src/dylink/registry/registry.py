"""Module registry: static catalog of module identity, tags and eligibility."""

import logging
from collections.abc import Iterable

from dylink.domain import ModuleDescriptor, ModuleLayer, ModuleTag
from dylink.errors import DuplicateModuleError, UnknownModuleError
from dylink.registry.predicates import Predicate, reloadable

logger = logging.getLogger(__name__)


class ModuleRegistry:
    """Catalog of registered modules.

    Populated once at start-up (see ``populate_registry``) and read-only
    afterwards. Listing results are sorted by ``(order, name)`` so they do not
    depend on registration order.
    """

    def __init__(self) -> None:
        self._modules: dict[str, ModuleDescriptor] = {}
        self._metadata_modules: list[str] = []

    def register_module(self, descriptor: ModuleDescriptor) -> None:
        """Register a module descriptor.

        Raises:
            DuplicateModuleError: If the name is already registered.
        """
        if descriptor.name in self._modules:
            raise DuplicateModuleError(descriptor.name)

        if descriptor.layer == ModuleLayer.KERNEL and descriptor.has_tag(ModuleTag.HOTFIX):
            logger.warning(
                f"Kernel module '{descriptor.name}' is tagged hotfix; kernel modules are never reloaded"
            )

        self._modules[descriptor.name] = descriptor
        logger.debug(f"Registered module {descriptor.name} (order={descriptor.order})")

    def register_metadata_module(self, name: str) -> None:
        """Register a metadata-only module name (loaded as data, never instantiated)."""
        if name in self._metadata_modules:
            raise DuplicateModuleError(name)
        self._metadata_modules.append(name)

    def get(self, name: str) -> ModuleDescriptor:
        try:
            return self._modules[name]
        except KeyError:
            raise UnknownModuleError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def descriptors(self, predicate: Predicate | None = None) -> list[ModuleDescriptor]:
        """Descriptors passing the predicate, sorted by (order, name)."""
        infos: Iterable[ModuleDescriptor] = self._modules.values()
        if predicate is not None:
            infos = (info for info in infos if predicate(info))
        return sorted(infos, key=lambda info: info.sort_key)

    def all_modules(self, predicate: Predicate | None = None) -> list[str]:
        """Names passing the predicate, sorted by (order, name)."""
        return [info.name for info in self.descriptors(predicate)]

    def is_reload_eligible(self, name: str) -> bool:
        return reloadable(self.get(name))

    def metadata_modules(self) -> list[str]:
        return list(self._metadata_modules)

    def entry_module(self) -> str | None:
        """Name of the module tagged as external control entry, if any."""
        entries = self.all_modules(lambda info: info.has_tag(ModuleTag.ENTRY))
        if len(entries) > 1:
            logger.warning(f"Multiple entry modules registered, using '{entries[0]}': {entries}")
        return entries[0] if entries else None

    def clear(self) -> None:
        """Drop every registration. Only called at shutdown."""
        self._modules.clear()
        self._metadata_modules.clear()
