"""Configuration loaded from ``swiftmeta.toml``."""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dataclasses_json import DataClassJsonMixin

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "swiftmeta.toml"


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed."""


@dataclass
class Config(DataClassJsonMixin):
    """Settings shared by the CLI and embedders.

    images: binaries the file-backed host loads when none are given.
    demangler: path or name of a ``swift-demangle`` executable; None
        searches ``PATH``.
    log_level: level name for the CLI's log handler.
    """

    images: list[str] = field(default_factory=list)
    demangler: Optional[str] = None
    log_level: str = "WARNING"


def load_config(path: str | Path | None = None) -> Config:
    """Load configuration from *path* or ``./swiftmeta.toml``, falling back to defaults.

    The file may hold the keys at top level or under a ``[swiftmeta]`` table.
    """
    config_path = Path(path) if path is not None else Path.cwd() / CONFIG_FILENAME
    if not config_path.is_file():
        if path is not None:
            raise ConfigError(f"Config file not found: {config_path}")
        return Config()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot load {config_path}: {exc}") from exc

    section = data.get("swiftmeta", data)
    known = {k: v for k, v in section.items() if k in Config.__dataclass_fields__}
    unknown = sorted(set(section) - set(known) - {"swiftmeta"})
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", config_path, ", ".join(unknown))
    return Config.from_dict(known)
