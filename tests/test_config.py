"""Tests for settings loading and the start environment."""

from pathlib import Path

import pytest

from dylink.config import Settings, load_settings, parse_properties
from dylink.errors import ConfigError


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults_without_file(self, tmp_path: Path, monkeypatch):
        """A missing default config yields defaults anchored at the cwd."""
        monkeypatch.chdir(tmp_path)

        settings = load_settings()

        assert settings.dylink_mode is True
        assert settings.unique_compile is True
        assert settings.source_root == tmp_path / "modules"
        assert settings.extra_defines == ["DYLINK_COMPILE"]

    def test_explicit_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.toml")

    def test_relative_paths_resolve_against_config_dir(self, tmp_path: Path):
        config_dir = tmp_path / "project"
        config_dir.mkdir()
        config = config_dir / "dylink.toml"
        config.write_text(
            '[dylink]\nsource_root = "src/modules"\nlibrary_dir = "/abs/library"\ntutorial_mode = true\n'
        )

        settings = load_settings(config)

        assert settings.source_root == config_dir.resolve() / "src/modules"
        assert settings.library_dir == Path("/abs/library")
        assert settings.tutorial_mode is True

    def test_invalid_toml(self, tmp_path: Path):
        config = tmp_path / "dylink.toml"
        config.write_text("[dylink\n")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_settings(config)

    def test_unknown_key_rejected(self, tmp_path: Path):
        config = tmp_path / "dylink.toml"
        config.write_text("[dylink]\nturbo = true\n")

        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings(config)


class TestModes:
    """Tests for derived mode flags."""

    @pytest.mark.parametrize(
        ("editor_mode", "dylink_mode", "expected"),
        [
            (False, True, False),
            (False, False, False),
            (True, True, False),
            (True, False, True),
        ],
    )
    def test_live_mode(self, editor_mode: bool, dylink_mode: bool, expected: bool):
        """Live loading only happens in the editor with linking disabled."""
        settings = Settings(editor_mode=editor_mode, dylink_mode=dylink_mode)
        assert settings.live_mode is expected


class TestProperties:
    """Tests for properties parsing and the start environment."""

    def test_parse_properties(self):
        text = "# comment\n\nregion = eu\n  lang=en  \n"
        assert parse_properties(text) == {"region": "eu", "lang": "en"}

    def test_malformed_line(self):
        with pytest.raises(ConfigError, match="line 2"):
            parse_properties("a = 1\nbroken\n")

    def test_extra_equals_is_malformed(self):
        with pytest.raises(ConfigError):
            parse_properties("url = a=b\n")

    def test_duplicate_key(self):
        with pytest.raises(ConfigError, match="already exists"):
            parse_properties("a = 1\na = 2\n")

    def test_environment_merges_sources(self, tmp_path: Path):
        props = tmp_path / "game.properties"
        props.write_text("server = local\n")
        settings = Settings(variables={"channel": "beta"}, properties_files=[props])

        env = settings.environment({"region": "eu"})

        assert env["region"] == "eu"
        assert env["channel"] == "beta"
        assert env["server"] == "local"
        assert env["dylink_mode"] == "true"
        assert env["tutorial_mode"] == "false"

    def test_environment_duplicate_across_sources(self, tmp_path: Path):
        props = tmp_path / "game.properties"
        props.write_text("region = us\n")
        settings = Settings(properties_files=[props])

        with pytest.raises(ConfigError):
            settings.environment({"region": "eu"})

    def test_environment_missing_properties_file(self, tmp_path: Path):
        settings = Settings(properties_files=[tmp_path / "missing.properties"])

        with pytest.raises(ConfigError, match="Cannot read"):
            settings.environment()
