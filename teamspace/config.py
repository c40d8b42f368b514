import shutil
from dataclasses import dataclass, fields
from functools import lru_cache

import yaml

from teamspace.lib import paths


@dataclass(frozen=True)
class Settings:
    poll_interval: float = 1.0
    poll_backoff_factor: float = 2.0
    poll_backoff_max: float = 60.0
    spawn_timeout: float = 5.0
    shutdown_wait: float = 30.0
    shutdown_attempts: int = 3
    retry_attempts: int = 3
    retry_backoff: float = 0.5
    lead_name: str = "team-lead"
    name_max_length: int = 64
    member_command: str = "claude --agent-id {name}@{team} --model {model}"


_NUMERIC = {f.name for f in fields(Settings) if f.type in (float, int)}


def _validate_config(cfg: dict) -> None:
    """Validate config structure. Fail fast on invalid types."""
    if not isinstance(cfg, dict):
        raise ValueError(f"Config must be a dict, got {type(cfg).__name__}")

    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(cfg) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

    for key in _NUMERIC & set(cfg):
        value = cfg[key]
        if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
            raise ValueError(f"Config '{key}' must be a non-negative number")

    if "lead_name" in cfg and not isinstance(cfg["lead_name"], str):
        raise ValueError("Config 'lead_name' must be a string")


def _clear_cache():
    load_config.cache_clear()


@lru_cache(maxsize=1)
def load_config() -> dict:
    """Load config.yaml, returning its content or an empty dict if not found."""
    path = paths.config_file()
    if not path.exists():
        return {}
    with open(path) as f:
        cfg = yaml.safe_load(f) or {}
    _validate_config(cfg)
    return cfg


def settings() -> Settings:
    return Settings(**load_config())


def init_config() -> None:
    """Initialize ~/.teamspace/config.yaml from packaged defaults if missing."""
    target = paths.config_file()
    if target.exists():
        return

    target.parent.mkdir(parents=True, exist_ok=True)

    default_config_path = paths.default_config_file()
    if not default_config_path.exists():
        raise FileNotFoundError(f"Default config not found at {default_config_path}")

    shutil.copy(default_config_path, target)
