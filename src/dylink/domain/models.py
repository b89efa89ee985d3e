"""Core data models.

- ModuleDescriptor: immutable identity of one registered module
- CompileRecord: persisted last-compile tick for a reload-eligible module
- ArtifactPair: binary bundle + debug-symbol companion, decrypted form
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from dylink.domain.enums import ModuleLayer, ModuleTag


class ModuleDescriptor(BaseModel):
    """Identity of one code module, registered once from the manifest."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    layer: ModuleLayer = ModuleLayer.SERVICE
    tags: frozenset[ModuleTag] = Field(default_factory=frozenset)
    order: int = 0

    def has_tag(self, tag: ModuleTag) -> bool:
        return tag in self.tags

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.order, self.name)


class CompileRecord(BaseModel):
    """Last successful compile of a module, as an mtime in nanoseconds."""

    name: str
    last_compile_tick: int = 0


@dataclass(frozen=True)
class ArtifactPair:
    """A decrypted artifact: the binary bundle and its symbol companion."""

    name: str
    binary: bytes
    symbols: bytes
