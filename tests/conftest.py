"""Pytest configuration and fixtures."""

import json
from pathlib import Path
from types import ModuleType

import pytest

from dylink.artifacts import SecureArtifactStore
from dylink.config import Settings
from dylink.db import Database, RecordStore
from dylink.domain import ModuleDescriptor, ModuleLayer, ModuleTag
from dylink.errors import LoadIncomplete
from dylink.registry import ModuleRegistry
from dylink.runtime import ModuleLoader


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio as the async backend."""
    return "asyncio"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with every path inside tmp_path."""
    return Settings(
        source_root=tmp_path / "modules",
        build_output_dir=tmp_path / "build",
        library_dir=tmp_path / "library",
        metadata_dir=tmp_path / "library" / "metadata",
        manifest_path=tmp_path / "manifest.json",
        database_path=tmp_path / "records.db",
    )


@pytest.fixture
async def db(tmp_path: Path):
    """Create a temporary database for testing."""
    database = Database(tmp_path / "records.db")
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture
def records(db: Database) -> RecordStore:
    return RecordStore(db)


@pytest.fixture
def store(settings: Settings) -> SecureArtifactStore:
    return SecureArtifactStore(settings.library_dir)


@pytest.fixture
def write_module(settings: Settings):
    """Factory writing a module package with its build-unit file."""

    def _write(name: str, files: dict[str, str] | None = None) -> Path:
        source_dir = settings.source_root / name
        source_dir.mkdir(parents=True, exist_ok=True)
        (source_dir / "module.json").write_text(
            json.dumps({"name": name, "version": 1, "references": []}, indent=2) + "\n"
        )
        for relpath, text in (files or {"__init__.py": "VALUE = 1\n"}).items():
            path = source_dir / relpath
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        return source_dir

    return _write


@pytest.fixture
def write_manifest(settings: Settings):
    """Factory writing a manifest file from module dicts."""

    def _write(modules: list[dict], metadata_modules: list[str] | None = None, variables=None) -> Path:
        data = {
            "variables": [{"key": k, "value": v} for k, v in (variables or {}).items()],
            "modules": modules,
            "metadata_modules": metadata_modules or [],
        }
        settings.manifest_path.write_text(json.dumps(data))
        return settings.manifest_path

    return _write


@pytest.fixture
def registry() -> ModuleRegistry:
    """Kernel (order 0, entry) and Hotfix (order 1, hotfix)."""
    reg = ModuleRegistry()
    reg.register_module(
        ModuleDescriptor(name="Kernel", order=0, layer=ModuleLayer.KERNEL, tags=frozenset({ModuleTag.ENTRY}))
    )
    reg.register_module(ModuleDescriptor(name="Hotfix", order=1, tags=frozenset({ModuleTag.HOTFIX})))
    return reg


class FakeLoader(ModuleLoader):
    """Builds plain module objects; records every call."""

    def __init__(self, hooks: dict[str, dict] | None = None):
        self.hooks = hooks or {}
        self.calls: list[tuple[str, str]] = []
        self.metadata: dict[str, bytes] = {}
        self.fail_on: set[str] = set()
        self.peers: dict[str, list[str]] = {}

    def _make(self, name: str, payload: bytes | None) -> ModuleType:
        module = ModuleType(name)
        module.payload = payload
        for attr, value in self.hooks.get(name, {}).items():
            setattr(module, attr, value)
        return module

    def load_live(self, name: str) -> ModuleType:
        self.calls.append(("live", name))
        return self._make(name, None)

    def load_bytes(self, name: str, binary: bytes, symbols: bytes, peers=None) -> ModuleType:
        self.calls.append(("bytes", name))
        self.peers[name] = list(peers or {})
        if name in self.fail_on:
            raise LoadIncomplete(name, "boom")
        return self._make(name, binary)

    def load_metadata(self, name: str, data: bytes) -> None:
        self.calls.append(("metadata", name))
        self.metadata[name] = data


@pytest.fixture
def fake_loader_factory():
    return FakeLoader
