"""
Tests for the config module.
"""

import os
from pathlib import Path
from unittest.mock import patch

from formulary_py.config import (
    DEFAULT_TIMEOUT,
    FormularyConfig,
    default_cache_dir,
    default_config_path,
)
from formulary_py.descriptor import PlatformPredicate
from formulary_py.descriptor.validate import DEFAULT_MATRIX_KEYS


def test_default_config_path() -> None:
    """default_config_path falls back to ~/.config/formulary/config.yaml."""
    env = {"HOME": str(Path.home())}
    with patch.dict(os.environ, env, clear=True):
        result = default_config_path()
        assert result == Path.home() / ".config" / "formulary" / "config.yaml"


def test_default_config_path_xdg() -> None:
    """default_config_path respects $XDG_CONFIG_HOME."""
    with patch.dict(os.environ, {"XDG_CONFIG_HOME": "/custom/config"}):
        result = default_config_path()
        assert result == Path("/custom/config/formulary/config.yaml")


def test_default_cache_dir_xdg() -> None:
    with patch.dict(os.environ, {"XDG_CACHE_HOME": "/custom/cache"}):
        assert default_cache_dir() == Path("/custom/cache/formulary")


def test_missing_file_returns_defaults(tmp_path: Path) -> None:
    """Loading a non-existent file returns the default config."""
    cfg = FormularyConfig.load(tmp_path / "nonexistent.yaml")
    assert cfg.timeout == DEFAULT_TIMEOUT
    assert cfg.generator == "GoReleaser"
    assert cfg.matrix_keys == list(DEFAULT_MATRIX_KEYS)
    assert cfg.bin_dir == Path.home() / ".local" / "bin"


def test_empty_file_returns_defaults(tmp_path: Path) -> None:
    """An empty YAML file returns the default config."""
    p = tmp_path / "config.yaml"
    p.write_text("")
    cfg = FormularyConfig.from_file(p)
    assert cfg.timeout == DEFAULT_TIMEOUT


def test_full_config_parsing(tmp_path: Path) -> None:
    """A fully-populated config file is parsed correctly."""
    p = tmp_path / "config.yaml"
    p.write_text("""\
bin_dir: "/opt/formulary/bin"
cache_dir: "/var/cache/formulary"
timeout: 15
generator: "formulary"
matrix:
  - macos/arm
  - linux/intel
""")
    cfg = FormularyConfig.from_file(p)
    assert cfg.bin_dir == Path("/opt/formulary/bin")
    assert cfg.cache_dir == Path("/var/cache/formulary")
    assert cfg.timeout == 15.0
    assert cfg.generator == "formulary"
    assert cfg.matrix_keys == ["macos/arm", "linux/intel"]
    assert cfg.matrix == [
        PlatformPredicate("macos", "arm"),
        PlatformPredicate("linux", "intel"),
    ]


def test_invalid_timeout_is_ignored() -> None:
    assert FormularyConfig.from_dict({"timeout": "soon"}).timeout == DEFAULT_TIMEOUT
    assert FormularyConfig.from_dict({"timeout": -5}).timeout == DEFAULT_TIMEOUT


def test_invalid_matrix_entries_are_skipped() -> None:
    cfg = FormularyConfig.from_dict({"matrix": ["windows/intel", "linux/arm64"]})
    assert cfg.matrix_keys == ["linux/arm64"]
    assert cfg.matrix[0].require_64_bit is True


def test_empty_matrix_falls_back_to_default() -> None:
    cfg = FormularyConfig.from_dict({"matrix": ["bogus"]})
    assert cfg.matrix_keys == list(DEFAULT_MATRIX_KEYS)


def test_non_mapping_returns_defaults() -> None:
    cfg = FormularyConfig.from_dict(["not", "a", "mapping"])  # type: ignore[arg-type]
    assert cfg.generator == "GoReleaser"


def test_malformed_yaml_returns_defaults(tmp_path: Path) -> None:
    """Invalid YAML is logged and the default config is returned."""
    p = tmp_path / "bad.yaml"
    p.write_text("timeout: [unclosed")
    cfg = FormularyConfig.from_file(p)
    assert cfg.timeout == DEFAULT_TIMEOUT
