"""Domain models for dylink."""

from dylink.domain.enums import LoadState, ModuleLayer, ModuleTag, ReloadReason
from dylink.domain.models import ArtifactPair, CompileRecord, ModuleDescriptor

__all__ = [
    "ArtifactPair",
    "CompileRecord",
    "LoadState",
    "ModuleDescriptor",
    "ModuleLayer",
    "ModuleTag",
    "ReloadReason",
]
