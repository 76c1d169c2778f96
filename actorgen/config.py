"""
Compiler configuration.

Defaults cover the normal case. A YAML file can override them:

    runtime_module: actorgen.actor
    marker_type: actorgen.actor.Actor
    async_key: async
    init_method: init
    excluded_methods: [init, in_capacity]
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, FrozenSet

import yaml

from .actor_ast import ACTOR_INTERFACE


class ConfigError(Exception):
    """Raised when a configuration file cannot be read or is invalid."""


@dataclass(frozen=True)
class CompilerConfig:
    """Settings shared by the parser and the generator."""
    runtime_module: str = "actorgen.actor"
    marker_type: str = "actorgen.actor.Actor"
    async_key: str = "async"
    init_method: str = ACTOR_INTERFACE.init
    excluded_methods: FrozenSet[str] = field(default_factory=lambda: frozenset({ACTOR_INTERFACE.init, "in_capacity"}))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompilerConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key == "excluded_methods":
                if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                    raise ConfigError("excluded_methods must be a list of method names")
                values[key] = frozenset(value)
            elif not isinstance(value, str) or not value:
                raise ConfigError(f"{key} must be a non-empty string")
            else:
                values[key] = value
        return cls(**values)


DEFAULT_CONFIG = CompilerConfig()


def load_config(path) -> CompilerConfig:
    """
    Load a configuration file.

    Args:
        path: Path to a YAML mapping of CompilerConfig fields

    Returns:
        CompilerConfig with the file's values over the defaults
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Unable to read config file {path}: {e.strerror}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return DEFAULT_CONFIG
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return CompilerConfig.from_dict(data)
