"""Configuration loading and validation for protokit.yaml files."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from protokit import DEFAULT_PROTOC_VERSION
from protokit.errors import ConfigError
from protokit.utils.file_utils import abs_clean

CONFIG_FILENAME = "protokit.yaml"

_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+(-rc\d+)?$")


@dataclass(frozen=True)
class PluginConfig:
    """A protoc plugin to run in generate mode."""

    name: str
    output: str  # absolute output directory
    flags: str = ""
    path: Optional[str] = None  # explicit plugin binary


@dataclass(frozen=True)
class ProtocConfig:
    """protoc version and include paths."""

    version: str = DEFAULT_PROTOC_VERSION
    includes: tuple[str, ...] = ()  # absolute paths
    allow_unused_imports: bool = False


@dataclass(frozen=True)
class BreakConfig:
    """Breaking-change check settings."""

    include_beta: bool = False
    allow_beta_deps: bool = False


@dataclass(frozen=True)
class GenerateConfig:
    """Code generation settings."""

    plugins: tuple[PluginConfig, ...] = ()


@dataclass(frozen=True)
class Config:
    """Effective configuration for one configuration scope.

    dir_path is the directory holding the config file (or the directory the
    defaults were resolved for); all relative paths in the file are resolved
    against it.
    """

    dir_path: str
    config_file: Optional[str] = None
    excludes: tuple[str, ...] = ()  # absolute paths
    protoc: ProtocConfig = field(default_factory=ProtocConfig)
    breaking: BreakConfig = field(default_factory=BreakConfig)
    generate: GenerateConfig = field(default_factory=GenerateConfig)


def get_default_config(dir_path: Path | str) -> Config:
    """Return the default configuration rooted at dir_path."""
    return Config(dir_path=abs_clean(dir_path))


def _resolve_path(value: Any, dir_path: Path, key: str, config_file: Optional[str]) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(
            f"'{key}' entries must be non-empty strings, got {value!r}",
            file=config_file,
        )
    path = Path(value)
    if not path.is_absolute():
        path = dir_path / path
    return abs_clean(path)


def _string_list(data: dict[str, Any], key: str, config_file: Optional[str]) -> list[Any]:
    value = data.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list", file=config_file)
    return value


def _section(data: dict[str, Any], key: str, config_file: Optional[str]) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping", file=config_file)
    return value


def _parse_protoc(
    protoc_dict: dict[str, Any], dir_path: Path, config_file: Optional[str]
) -> ProtocConfig:
    """Parse the protoc section."""
    version = str(protoc_dict.get("version") or DEFAULT_PROTOC_VERSION)
    includes = tuple(
        _resolve_path(include, dir_path, "protoc.includes", config_file)
        for include in _string_list(protoc_dict, "includes", config_file)
    )
    return ProtocConfig(
        version=version,
        includes=includes,
        allow_unused_imports=bool(protoc_dict.get("allow_unused_imports", False)),
    )


def _parse_break(break_dict: dict[str, Any]) -> BreakConfig:
    """Parse the break section."""
    return BreakConfig(
        include_beta=bool(break_dict.get("include_beta", False)),
        allow_beta_deps=bool(break_dict.get("allow_beta_deps", False)),
    )


def _parse_plugin(
    plugin_dict: Any, dir_path: Path, config_file: Optional[str]
) -> PluginConfig:
    """Parse one generate.plugins entry."""
    if not isinstance(plugin_dict, dict):
        raise ConfigError("generate.plugins entries must be mappings", file=config_file)
    name = plugin_dict.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError("generate.plugins entries require a 'name'", file=config_file)
    output = plugin_dict.get("output")
    if not output:
        raise ConfigError(
            f"Plugin '{name}' requires an 'output' directory",
            file=config_file,
        )
    path = plugin_dict.get("path")
    return PluginConfig(
        name=name,
        output=_resolve_path(output, dir_path, "generate.plugins.output", config_file),
        flags=str(plugin_dict.get("flags") or ""),
        path=str(path) if path else None,
    )


def _parse_generate(
    generate_dict: dict[str, Any], dir_path: Path, config_file: Optional[str]
) -> GenerateConfig:
    """Parse the generate section."""
    plugins = tuple(
        _parse_plugin(plugin_dict, dir_path, config_file)
        for plugin_dict in _string_list(generate_dict, "plugins", config_file)
    )
    return GenerateConfig(plugins=plugins)


def validate_config(config: Config) -> None:
    """Validate configuration values.

    Raises:
        ConfigError: If configuration is invalid.
    """
    if not _VERSION_RE.match(config.protoc.version):
        raise ConfigError(
            f"Invalid protoc version '{config.protoc.version}': "
            "expected MAJOR.MINOR.PATCH with an optional -rcN suffix",
            file=config.config_file,
        )

    seen: set[str] = set()
    for plugin in config.generate.plugins:
        if plugin.name in seen:
            raise ConfigError(
                f"Duplicate plugin name '{plugin.name}'",
                file=config.config_file,
            )
        seen.add(plugin.name)


def parse_config(
    data: dict[str, Any],
    dir_path: Path | str,
    config_file: Optional[str] = None,
) -> Config:
    """Build a Config from a parsed YAML mapping.

    Args:
        data: Top-level mapping from the YAML document.
        dir_path: Directory that relative paths are resolved against.
        config_file: Path of the source file, for error messages.

    Returns:
        Validated Config.
    """
    dir_path = Path(abs_clean(dir_path))
    excludes = tuple(
        _resolve_path(exclude, dir_path, "excludes", config_file)
        for exclude in _string_list(data, "excludes", config_file)
    )

    config = Config(
        dir_path=str(dir_path),
        config_file=config_file,
        excludes=excludes,
        protoc=_parse_protoc(_section(data, "protoc", config_file), dir_path, config_file),
        breaking=_parse_break(_section(data, "break", config_file)),
        generate=_parse_generate(_section(data, "generate", config_file), dir_path, config_file),
    )

    validate_config(config)

    return config


def _parse_yaml(content: str, dir_path: Path, config_file: Optional[str]) -> Config:
    if not content.strip():
        return get_default_config(dir_path)

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", file=config_file)

    if not data:
        return get_default_config(dir_path)
    if not isinstance(data, dict):
        raise ConfigError("Top-level protokit config must be a mapping", file=config_file)

    return parse_config(data, dir_path, config_file)


def load_config(config_path: Path | str) -> Config:
    """Load configuration from a protokit.yaml file.

    Args:
        config_path: Path to the protokit.yaml file.

    Returns:
        Config with loaded values merged with defaults.

    Raises:
        ConfigError: If the file exists but contains invalid configuration.
    """
    config_path = Path(abs_clean(config_path))
    config_file = str(config_path)

    if not config_path.exists():
        return get_default_config(config_path.parent)

    try:
        content = config_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Could not read config: {e}", file=config_file)

    config = _parse_yaml(content, config_path.parent, config_file)
    if config.config_file is None:
        config = Config(dir_path=config.dir_path, config_file=config_file)
    return config


def load_config_data(config_data: str, dir_path: Path | str) -> Config:
    """Load configuration from inline YAML, as if it lived in dir_path."""
    return _parse_yaml(config_data, Path(abs_clean(dir_path)), None)
