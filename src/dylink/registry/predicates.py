"""Filter predicates over module descriptors.

The registry holds no mode state. Callers build predicates from their own
mode flags and pass them in.
"""

from collections.abc import Callable

from dylink.domain import ModuleDescriptor, ModuleLayer, ModuleTag

Predicate = Callable[[ModuleDescriptor], bool]


def has_tag(tag: ModuleTag) -> Predicate:
    return lambda info: info.has_tag(tag)


def lacks_tag(tag: ModuleTag) -> Predicate:
    return lambda info: not info.has_tag(tag)


def tutorial_filter(tutorial_mode: bool) -> Predicate:
    """Exclude tutorial modules unless tutorial mode is enabled."""
    if tutorial_mode:
        return lambda info: True
    return lacks_tag(ModuleTag.TUTORIAL)


def reloadable(info: ModuleDescriptor) -> bool:
    """Hotfix-tagged and outside the kernel layer."""
    return info.has_tag(ModuleTag.HOTFIX) and info.layer != ModuleLayer.KERNEL


def all_of(*predicates: Predicate) -> Predicate:
    return lambda info: all(p(info) for p in predicates)
