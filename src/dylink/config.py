"""Settings loading.

Settings live in the ``[dylink]`` table of ``dylink.toml``. Relative paths
resolve against the directory holding the config file.
"""

import logging
from pathlib import Path
from typing import Any

import tomli
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dylink.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "dylink.toml"

_PATH_FIELDS = (
    "source_root",
    "build_output_dir",
    "library_dir",
    "metadata_dir",
    "manifest_path",
    "database_path",
)


class Settings(BaseModel):
    """Runtime and tooling settings."""

    model_config = ConfigDict(extra="forbid")

    # Paths
    source_root: Path = Path("modules")
    build_output_dir: Path = Path("build/bin")
    library_dir: Path = Path("library")
    metadata_dir: Path = Path("library/metadata")
    manifest_path: Path = Path("manifest.json")
    database_path: Path = Path(".dylink/records.db")

    # Modes
    editor_mode: bool = False  # Development host; enables the live load path
    dylink_mode: bool = True  # Load from encrypted artifacts even in editor mode
    tutorial_mode: bool = False
    unique_compile: bool = True  # Time-qualify reload-eligible build units while compiling
    auto_compile: bool = False  # Rebuild stale modules before loading
    development: bool = True  # Development build option for the compiler

    compile_command: list[str] | None = None
    extra_defines: list[str] = Field(default_factory=lambda: ["DYLINK_COMPILE"])
    properties_files: list[Path] = Field(default_factory=list)
    variables: dict[str, str] = Field(default_factory=dict)

    @property
    def live_mode(self) -> bool:
        """Load straight from the import system, bypassing the artifact store."""
        return self.editor_mode and not self.dylink_mode

    def resolve_paths(self, base_dir: Path) -> "Settings":
        """Return a copy with relative paths anchored at base_dir."""
        updates: dict[str, Any] = {}
        for name in _PATH_FIELDS:
            value: Path = getattr(self, name)
            if not value.is_absolute():
                updates[name] = base_dir / value
        updates["properties_files"] = [
            p if p.is_absolute() else base_dir / p for p in self.properties_files
        ]
        return self.model_copy(update=updates)

    def environment(self, manifest_variables: dict[str, str] | None = None) -> dict[str, str]:
        """Build the environment passed to the entry module's start() call.

        Order: manifest variables, mode flags, custom variables, properties files.

        Raises:
            ConfigError: On duplicate keys or malformed properties files.
        """
        env: dict[str, str] = dict(manifest_variables or {})
        for key, value in (
            ("editor_mode", self.editor_mode),
            ("dylink_mode", self.dylink_mode),
            ("tutorial_mode", self.tutorial_mode),
            ("development", self.development),
        ):
            env[key] = str(value).lower()
        for key, value in self.variables.items():
            _add_variable(env, key, value)
        for path in self.properties_files:
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigError(f"Cannot read properties file {path}: {e}") from e
            parse_properties(text, env)
        return env


def _add_variable(env: dict[str, str], key: str, value: str) -> None:
    if key in env:
        raise ConfigError(f"Property key '{key}' already exists")
    env[key] = value


def parse_properties(text: str, variables: dict[str, str] | None = None) -> dict[str, str]:
    """Parse ``key = value`` lines into variables.

    Blank lines and ``#`` comments are skipped.

    Raises:
        ConfigError: On a line without exactly one '=' or a repeated key.
    """
    variables = {} if variables is None else variables
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split("=")
        if len(parts) != 2:
            raise ConfigError(f"Invalid property on line {lineno}: '{line}'")
        _add_variable(variables, parts[0].strip(), parts[1].strip())
    return variables


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a TOML file.

    A missing file yields defaults resolved against the current directory.

    Raises:
        ConfigError: If the file is not valid TOML or has invalid values.
    """
    config_path = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_NAME

    if not config_path.exists():
        if path:
            raise ConfigError(f"Config file not found: {config_path}")
        logger.debug(f"No {DEFAULT_CONFIG_NAME} found, using defaults")
        return Settings().resolve_paths(config_path.parent)

    try:
        data = tomli.loads(config_path.read_text(encoding="utf-8"))
    except tomli.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        settings = Settings.model_validate(data.get("dylink", {}))
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {config_path}: {e}") from e

    logger.debug(f"Loaded settings from {config_path}")
    return settings.resolve_paths(config_path.parent.resolve())
