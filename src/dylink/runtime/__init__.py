"""Module loading at runtime."""

from dylink.runtime.entry import EntryPoint
from dylink.runtime.loader import BundleLoader, ModuleLoader
from dylink.runtime.orchestrator import LoadOrchestrator
from dylink.runtime.table import LoadedModuleTable

__all__ = [
    "BundleLoader",
    "EntryPoint",
    "LoadOrchestrator",
    "LoadedModuleTable",
    "ModuleLoader",
]
