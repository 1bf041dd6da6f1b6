"""
Configuration file support for Formulary.

Loads settings from ``~/.config/formulary/config.yaml`` (or
``$XDG_CONFIG_HOME/formulary/config.yaml``) and exposes them as typed
dataclasses that the CLI can merge with command-line flags.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from formulary_py.descriptor import DescriptorError, PlatformPredicate
from formulary_py.descriptor.validate import DEFAULT_MATRIX_KEYS
from formulary_py.formula.render import DEFAULT_GENERATOR

logger = logging.getLogger("formulary.config")

DEFAULT_TIMEOUT = 60.0


def default_config_path() -> Path:
    """Return the default configuration file path.

    Uses ``$XDG_CONFIG_HOME/formulary/config.yaml`` when set, otherwise
    falls back to ``~/.config/formulary/config.yaml``.
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "formulary" / "config.yaml"
    return Path.home() / ".config" / "formulary" / "config.yaml"


def default_bin_dir() -> Path:
    return Path.home() / ".local" / "bin"


def default_cache_dir() -> Path:
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg) / "formulary"
    return Path.home() / ".cache" / "formulary"


@dataclass
class FormularyConfig:
    """Top-level configuration loaded from the YAML file."""

    bin_dir: Path = field(default_factory=default_bin_dir)
    cache_dir: Path = field(default_factory=default_cache_dir)
    timeout: float = DEFAULT_TIMEOUT
    generator: str = DEFAULT_GENERATOR
    matrix_keys: List[str] = field(default_factory=lambda: list(DEFAULT_MATRIX_KEYS))

    @property
    def matrix(self) -> List[PlatformPredicate]:
        return [PlatformPredicate.from_key(key) for key in self.matrix_keys]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormularyConfig":
        """Construct a ``FormularyConfig`` from a parsed YAML dictionary."""
        if not isinstance(data, dict):
            return cls()

        cfg = cls()
        if data.get("bin_dir"):
            cfg.bin_dir = Path(str(data["bin_dir"])).expanduser()
        if data.get("cache_dir"):
            cfg.cache_dir = Path(str(data["cache_dir"])).expanduser()
        if data.get("generator"):
            cfg.generator = str(data["generator"])

        timeout = data.get("timeout")
        if timeout is not None:
            try:
                cfg.timeout = float(timeout)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid timeout: %s", timeout)
            else:
                if cfg.timeout <= 0:
                    logger.warning("Ignoring non-positive timeout: %s", timeout)
                    cfg.timeout = DEFAULT_TIMEOUT

        matrix = data.get("matrix")
        if matrix is not None:
            keys: List[str] = []
            for entry in matrix if isinstance(matrix, list) else []:
                try:
                    keys.append(PlatformPredicate.from_key(str(entry)).label)
                except DescriptorError as e:
                    logger.warning("Skipping invalid matrix entry %s: %s", entry, e)
            if keys:
                cfg.matrix_keys = keys
            else:
                logger.warning("Matrix is empty, using default %s", DEFAULT_MATRIX_KEYS)

        return cfg

    @classmethod
    def from_file(cls, path: Path) -> "FormularyConfig":
        """Read a YAML file and return a ``FormularyConfig``.

        Returns an empty default config on any error.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f.read())
            if data is None:
                return cls()
            return cls.from_dict(data)
        except (IOError, yaml.YAMLError) as e:
            logger.error("Failed to load config from %s: %s", path, e)
            return cls()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "FormularyConfig":
        """Main entry point: load config from *config_path* or the default location.

        Returns an empty config if the file does not exist.
        """
        path = config_path or default_config_path()
        if not path.exists():
            return cls()
        return cls.from_file(path)
