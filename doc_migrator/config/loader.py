"""
Configuration management and loading.

Settings come from an optional YAML file, then environment variables,
then explicit overrides (CLI options), each layer replacing the last.
"""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from ..core.rate_limiter import DEFAULT_TIER, get_tier

DEFAULT_CONFIG_FILE = "doc-migrator.yaml"
DEFAULT_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_BASE_URL = "https://api.anthropic.com/v1/"
API_KEY_ENV_VAR = "ANTHROPIC_API_KEY"
API_KEY_PREFIX = "sk-ant-"

# Environment variable -> (config key, parser)
ENV_VARS = {
    "DOC_MIGRATOR_API_TIER": ("api_tier", str),
    "DOC_MIGRATOR_MODEL": ("model", str),
    "DOC_MIGRATOR_MAX_COST": ("max_cost", float),
    "DOC_MIGRATOR_WORKERS": ("workers", int),
    "DOC_MIGRATOR_AVG_OUTPUT_TOKENS": ("avg_output_tokens_per_doc", int),
    "DOC_MIGRATOR_BASE_URL": ("base_url", str),
}


@dataclass(frozen=True)
class MigratorConfig:
    """Settings for a migration run."""
    api_tier: str = DEFAULT_TIER
    model: str = DEFAULT_MODEL
    max_cost: Optional[float] = 50.0  # None means unlimited
    workers: int = 3
    stop_on_error: bool = False
    avg_output_tokens_per_doc: int = 1000
    base_url: str = DEFAULT_BASE_URL

    def __post_init__(self):
        """Validate settings."""
        get_tier(self.api_tier)
        if not self.model or not self.model.strip():
            raise ValueError("model cannot be empty")
        if self.max_cost is not None and self.max_cost <= 0:
            raise ValueError("max_cost must be > 0")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.avg_output_tokens_per_doc < 0:
            raise ValueError("avg_output_tokens_per_doc cannot be negative")


_CONFIG_TYPES = {
    "api_tier": (str,),
    "model": (str,),
    "max_cost": (int, float),
    "workers": (int,),
    "stop_on_error": (bool,),
    "avg_output_tokens_per_doc": (int,),
    "base_url": (str,),
}


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Load and validate the YAML configuration file.

    Strict validation ensures no silent misconfigurations that could
    lead to unexpected cost overruns.

    Args:
        path: Path to YAML configuration file

    Returns:
        Mapping of validated settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a mapping")

    unknown_keys = set(raw_config.keys()) - set(_CONFIG_TYPES)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown_keys)}")

    settings: Dict[str, Any] = {}
    for key, value in raw_config.items():
        expected = _CONFIG_TYPES[key]
        if value is None and key == "max_cost":
            settings[key] = None
            continue
        # bool is an int subclass; only stop_on_error accepts it
        if isinstance(value, bool) and bool not in expected:
            raise ValueError(f"'{key}' has invalid type bool")
        if not isinstance(value, expected):
            raise ValueError(f"'{key}' has invalid type {type(value).__name__}")
        settings[key] = float(value) if key == "max_cost" else value
    return settings


def _read_env(env: Mapping[str, str]) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    for var, (key, parse) in ENV_VARS.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            settings[key] = parse(raw)
        except ValueError:
            raise ValueError(f"Invalid value for {var}: {raw!r}")
    return settings


def load_config(
    path: Union[str, Path, None] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    no_budget: bool = False,
) -> MigratorConfig:
    """Build the effective configuration.

    Args:
        path: Optional YAML configuration file
        env: Environment mapping (defaults to os.environ)
        overrides: Explicit settings; None values are ignored
        no_budget: Run without a cost ceiling

    Returns:
        Validated MigratorConfig
    """
    env = os.environ if env is None else env
    settings: Dict[str, Any] = {}
    if path is not None:
        settings.update(load_config_file(path))
    settings.update(_read_env(env))

    known = {f.name for f in fields(MigratorConfig)}
    for key, value in (overrides or {}).items():
        if key not in known:
            raise ValueError(f"Unknown configuration key: {key}")
        if value is not None:
            settings[key] = value

    config = MigratorConfig(**settings)
    if no_budget:
        config = replace(config, max_cost=None)
    return config


def load_api_key(env: Optional[Mapping[str, str]] = None) -> str:
    """Read and validate the API key from the environment.

    Raises:
        ValueError: If the key is missing or malformed
    """
    env = os.environ if env is None else env
    api_key = env.get(API_KEY_ENV_VAR, "").strip()
    if not api_key:
        raise ValueError(f"{API_KEY_ENV_VAR} is not set")
    if not api_key.startswith(API_KEY_PREFIX):
        raise ValueError(f"{API_KEY_ENV_VAR} must start with '{API_KEY_PREFIX}'")
    return api_key
