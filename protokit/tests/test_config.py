"""Tests for protokit.yaml loading and validation."""

import os

import pytest
import yaml

from protokit import DEFAULT_PROTOC_VERSION
from protokit.config import (
    CONFIG_FILENAME,
    Config,
    ProtocConfig,
    get_default_config,
    load_config,
    load_config_data,
    validate_config,
)
from protokit.errors import ConfigError


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_returns_defaults(self, tmp_path):
        """A missing config file yields the default configuration."""
        config = load_config(tmp_path / CONFIG_FILENAME)

        assert config.dir_path == str(tmp_path)
        assert config.config_file is None
        assert config.protoc.version == DEFAULT_PROTOC_VERSION
        assert config.excludes == ()
        assert config.generate.plugins == ()

    def test_empty_file_returns_defaults_with_source(self, tmp_path):
        """An empty config file still marks its directory as a scope root."""
        config_file = tmp_path / CONFIG_FILENAME
        config_file.write_text("")

        config = load_config(config_file)

        assert config.config_file == str(config_file)
        assert config.protoc == ProtocConfig()

    def test_full_config(self, tmp_path):
        """All sections are parsed and paths resolved against the config dir."""
        config_file = tmp_path / CONFIG_FILENAME
        config_file.write_text(yaml.dump({
            "excludes": ["vendor"],
            "protoc": {
                "version": "3.8.0",
                "includes": ["third_party", "/opt/include"],
                "allow_unused_imports": True,
            },
            "break": {"include_beta": True, "allow_beta_deps": True},
            "generate": {
                "plugins": [
                    {"name": "go", "output": "gen/go", "flags": "plugins=grpc"},
                    {"name": "custom", "output": "gen/custom", "path": "/bin/protoc-gen-custom"},
                ],
            },
        }))

        config = load_config(config_file)

        assert config.excludes == (os.path.join(str(tmp_path), "vendor"),)
        assert config.protoc.version == "3.8.0"
        assert config.protoc.includes == (os.path.join(str(tmp_path), "third_party"), "/opt/include")
        assert config.protoc.allow_unused_imports is True
        assert config.breaking.include_beta is True
        assert config.breaking.allow_beta_deps is True

        go, custom = config.generate.plugins
        assert go.name == "go"
        assert go.output == os.path.join(str(tmp_path), "gen", "go")
        assert go.flags == "plugins=grpc"
        assert go.path is None
        assert custom.path == "/bin/protoc-gen-custom"
        assert custom.flags == ""

    def test_invalid_yaml_raises(self, tmp_path):
        """Malformed YAML raises ConfigError naming the file."""
        config_file = tmp_path / CONFIG_FILENAME
        config_file.write_text("{ invalid yaml: [")

        with pytest.raises(ConfigError) as exc_info:
            load_config(config_file)

        assert exc_info.value.file == str(config_file)
        assert exc_info.value.to_json()["error"] == "config_invalid"

    def test_non_mapping_raises(self, tmp_path):
        """A top-level list is rejected."""
        config_file = tmp_path / CONFIG_FILENAME
        config_file.write_text("- one\n- two\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config(config_file)

    def test_excludes_must_be_list(self, tmp_path):
        """excludes given as a string is rejected."""
        config_file = tmp_path / CONFIG_FILENAME
        config_file.write_text("excludes: vendor\n")

        with pytest.raises(ConfigError, match="excludes"):
            load_config(config_file)


class TestValidation:
    """Tests for value validation."""

    @pytest.mark.parametrize("version", ["3.11.0", "3.12.0-rc1", "10.0.1"])
    def test_valid_versions(self, tmp_path, version):
        """Release and release-candidate versions are accepted."""
        config = load_config_data(f"protoc:\n  version: {version}\n", tmp_path)
        assert config.protoc.version == version

    @pytest.mark.parametrize("version", ["3.11", "latest", "3.11.0-beta"])
    def test_invalid_versions(self, tmp_path, version):
        """Anything but MAJOR.MINOR.PATCH[-rcN] is rejected."""
        with pytest.raises(ConfigError, match="Invalid protoc version"):
            load_config_data(f"protoc:\n  version: {version}\n", tmp_path)

    def test_duplicate_plugin_names(self, tmp_path):
        """Two plugins may not share a name."""
        data = yaml.dump({
            "generate": {
                "plugins": [
                    {"name": "go", "output": "a"},
                    {"name": "go", "output": "b"},
                ],
            },
        })
        with pytest.raises(ConfigError, match="Duplicate plugin"):
            load_config_data(data, tmp_path)

    def test_plugin_requires_output(self, tmp_path):
        """A plugin without an output directory is rejected."""
        with pytest.raises(ConfigError, match="output"):
            load_config_data("generate:\n  plugins:\n    - name: go\n", tmp_path)

    def test_validate_default_config(self, tmp_path):
        """The default configuration is valid."""
        validate_config(get_default_config(tmp_path))


class TestConfigData:
    """Tests for inline configuration."""

    def test_config_data_resolves_against_dir(self, tmp_path):
        """Relative paths in inline config resolve against the given dir."""
        config = load_config_data("excludes: [gen]\n", tmp_path)

        assert config.dir_path == str(tmp_path)
        assert config.config_file is None
        assert config.excludes == (os.path.join(str(tmp_path), "gen"),)

    def test_empty_config_data(self, tmp_path):
        """Empty inline config is the default configuration."""
        assert load_config_data("", tmp_path) == Config(dir_path=str(tmp_path))
