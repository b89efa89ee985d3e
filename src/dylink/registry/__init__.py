"""Module registry and manifest loading."""

from dylink.registry.manifest import Manifest, load_manifest, populate_registry
from dylink.registry.predicates import all_of, has_tag, lacks_tag, reloadable, tutorial_filter
from dylink.registry.registry import ModuleRegistry

__all__ = [
    "Manifest",
    "ModuleRegistry",
    "all_of",
    "has_tag",
    "lacks_tag",
    "load_manifest",
    "populate_registry",
    "reloadable",
    "tutorial_filter",
]
