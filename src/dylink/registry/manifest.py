"""Declarative module manifest, parsed once at start-up."""

import json
import logging
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from dylink.domain import ModuleDescriptor, ModuleLayer, ModuleTag
from dylink.errors import ManifestError
from dylink.registry.registry import ModuleRegistry

logger = logging.getLogger(__name__)


class ManifestVariable(BaseModel):
    key: str
    value: str


class ManifestModule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    order: int = 0
    tags: list[ModuleTag] = Field(default_factory=list)
    layer: ModuleLayer = ModuleLayer.SERVICE

    def to_descriptor(self) -> ModuleDescriptor:
        return ModuleDescriptor(
            name=self.name,
            order=self.order,
            tags=frozenset(self.tags),
            layer=self.layer,
        )


class Manifest(BaseModel):
    """Module manifest file contents."""

    variables: list[ManifestVariable] = Field(default_factory=list)
    modules: list[ManifestModule] = Field(default_factory=list)
    metadata_modules: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("metadata_modules", "aot_libraries"),
    )

    def variables_dict(self) -> dict[str, str]:
        return {v.key: v.value for v in self.variables}


def load_manifest(path: str | Path) -> Manifest:
    """Read and validate a manifest file.

    Raises:
        ManifestError: If the file is missing, not JSON, or fails validation.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ManifestError(path, "file not found") from None
    except json.JSONDecodeError as e:
        raise ManifestError(path, f"invalid JSON: {e}") from e

    try:
        return Manifest.model_validate(raw)
    except ValidationError as e:
        raise ManifestError(path, str(e)) from e


def populate_registry(registry: ModuleRegistry, manifest: Manifest) -> ModuleRegistry:
    """Register every manifest module and metadata module."""
    for module in manifest.modules:
        registry.register_module(module.to_descriptor())
    for name in manifest.metadata_modules:
        registry.register_metadata_module(name)

    logger.info(
        f"Registry populated with {len(manifest.modules)} modules "
        f"and {len(manifest.metadata_modules)} metadata modules"
    )
    return registry
