"""
gvm-manager Configuration Loader

Reads gvmd.yaml and substitutes environment variables into its string
values, so database credentials can stay out of the file:

```yaml
database:
  type: postgresql
  host: "${PGHOST:-localhost}"
  name: "${PGDATABASE:-gvmd}"
  password: "${PGPASSWORD}"
```

`${NAME}` must be set in the environment; `${NAME:-value}` falls back to
`value`. A missing variable is reported with the key it appears under.
"""

import os
import re
from pathlib import Path
from typing import Any, Optional, Union
import logging

import yaml

from ..errors import ConfigurationError
from .schema import ManagerConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "gvmd.yaml"
CONFIG_ENV = "GVMD_CONFIG"

VARIABLE = re.compile(r'\$\{(?P<name>[^}:]+)(?::-(?P<fallback>[^}]*))?\}')


def _expand(text: str, key: str) -> str:
    def lookup(match: re.Match) -> str:
        name, fallback = match.group("name"), match.group("fallback")
        value = os.environ.get(name, fallback)
        if value is None:
            raise ConfigurationError(
                f"{key or 'value'} refers to unset environment variable {name}",
                {"key": key, "variable": name},
            )
        return value

    return VARIABLE.sub(lookup, text)


def expand_environment(value: Any, key: str = "") -> Any:
    """
    Substitute environment variables into every string of a parsed config.

    `key` is the dotted path of `value` within gvmd.yaml, used in errors.
    Raises ConfigurationError for a `${NAME}` without fallback whose
    variable is unset.
    """
    if isinstance(value, str):
        return _expand(value, key)
    if isinstance(value, dict):
        return {
            name: expand_environment(item, f"{key}.{name}" if key else str(name))
            for name, item in value.items()
        }
    if isinstance(value, list):
        return [expand_environment(item, f"{key}[{index}]") for index, item in enumerate(value)]
    return value


def load_config_from_file(
    config_path: Union[str, Path],
    interpolate: bool = True
) -> ManagerConfig:
    """
    Load manager configuration from a gvmd.yaml file.

    Relative paths in the file (the SQLite database) resolve against the
    file's directory unless it sets `working_dir`. Raises
    FileNotFoundError for a missing file, ConfigurationError when the file
    is not a mapping or names an unset variable, and yaml.YAMLError for
    malformed YAML.
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")
    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ConfigurationError(
            f"Configuration file must contain a mapping: {config_path}",
            {"path": str(config_path)},
        )

    if interpolate:
        try:
            raw_config = expand_environment(raw_config)
        except ConfigurationError as e:
            logger.error(f"Configuration error in {config_path}: {e.message}")
            raise ConfigurationError(e.message, {**e.details, "path": str(config_path)}) from e

    raw_config.setdefault("working_dir", str(config_path.parent.absolute()))
    return ManagerConfig.from_dict(raw_config)


def config_candidates(working_dir: Optional[Path] = None) -> list[Path]:
    """Places searched for gvmd.yaml, in order."""
    candidates = []
    if os.environ.get(CONFIG_ENV):
        candidates.append(Path(os.environ[CONFIG_ENV]))
    for base in ([working_dir] if working_dir else []) + [Path.cwd()]:
        candidates.extend([base / CONFIG_FILENAME, base / "config" / CONFIG_FILENAME])
    return candidates


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
) -> ManagerConfig:
    """
    Load the manager configuration.

    An explicit `config_path` is used as is. Otherwise the first file from
    config_candidates() is loaded, and without one the defaults apply with
    `working_dir` (or the current directory) as base.
    """
    if config_path:
        return load_config_from_file(config_path)

    working_dir = Path(working_dir) if working_dir else None
    for path in config_candidates(working_dir):
        if path.is_file():
            logger.info(f"Found configuration at {path}")
            return load_config_from_file(path)

    logger.info(f"No {CONFIG_FILENAME} found, using default configuration")
    return ManagerConfig(working_dir=working_dir or Path.cwd())
