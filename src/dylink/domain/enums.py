"""Enumerations for module descriptors and runtime lifecycle."""

from enum import Enum, IntEnum


class ModuleLayer(str, Enum):
    """Trust tier of a module. Kernel modules are never hot-swapped."""

    KERNEL = "kernel"
    INTERMEDIATE = "intermediate"
    SERVICE = "service"


class ModuleTag(str, Enum):
    """Tags that drive registry filtering."""

    SHARED = "shared"  # Referenced directly by host tooling, always live-loaded
    HOTFIX = "hotfix"  # Reload-eligible
    TUTORIAL = "tutorial"  # Only selected when tutorial mode is on
    ENTRY = "entry"  # External control entry, receives lifecycle notifications


class LoadState(str, Enum):
    """Lifecycle states of the load orchestrator."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"


class ReloadReason(IntEnum):
    """Reason code passed to the entry module's reload() call."""

    FULL = 1
    CONFIGURATION = 2
