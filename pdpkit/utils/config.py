"""
Configuration management for pdpkit.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "pdpkit"
    version: str = "0.1.0"
    log_level: str = "INFO"
    data_dir: str = "data"
    logs_dir: str = "logs"


class SignalsConfig(BaseModel):
    """PDP signal classifier configuration."""

    model_config = ConfigDict(extra="forbid")

    # Costly strategies are skipped when score <= threshold and not strong_product
    min_score_to_continue: int = 10
    # Heuristic verdict requires at least this score (plus strong_product)
    pdp_min_score: int = 7
    html_max_chars: int = 320_000


class PatchConfig(BaseModel):
    """Patch application configuration."""

    model_config = ConfigDict(extra="forbid")

    retry_delay_seconds: float = 0.8
    max_attempts: int = 3
    wrap_values: bool = True
    wrap_style: str = (
        "background:#ECFDF5;color:#065F46;border:1px solid #A7F3D0;"
        "padding:4px 6px;border-radius:6px;display:inline-block;"
    )


class StrategyConfig(BaseModel):
    """Strategy routing configuration."""

    model_config = ConfigDict(extra="forbid")

    default_id: str = "heuristics"
    settings_path: str = "config/strategies.yaml"
    prefilter_costly: bool = True
    # Heuristics asks the generator for rewritten values when a PDP is found
    heuristics_generate: bool = True


class GeneratorConfig(BaseModel):
    """Generator backend (LLM proxy) configuration."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = "http://localhost:8787"
    analyze_path: str = "/api/analyze"
    generate_path: str = "/api/generate"
    ocr_path: str = "/api/ocr"
    timeout: float = 60.0
    max_retries: int = 3
    retry_delay: float = 1.0


class CacheConfig(BaseModel):
    """Per-tab cache configuration."""

    model_config = ConfigDict(extra="forbid")

    durable_enabled: bool = True
    durable_path: str = "data/tab_cache.db"


class NavigationConfig(BaseModel):
    """Navigation debounce configuration."""

    model_config = ConfigDict(extra="forbid")

    debounce_ms: int = 300


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    signals: SignalsConfig = Field(default_factory=SignalsConfig)
    patch: PatchConfig = Field(default_factory=PatchConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    generator: GeneratorConfig = Field(default_factory=GeneratorConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    navigation: NavigationConfig = Field(default_factory=NavigationConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_local_overrides(config_dir: Path) -> dict[str, Any]:
    """Load local.yaml overrides.

    Top-level keys correspond to config file names (without .yaml extension).

    Example local.yaml:
        settings:
          signals:
            min_score_to_continue: 12
    """
    local_path = config_dir / "local.yaml"
    if not local_path.exists():
        return {}
    with open(local_path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml and merge the `settings` section of local.yaml over it."""
    config: dict[str, Any] = {}

    base_path = config_dir / "settings.yaml"
    if base_path.exists():
        with open(base_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_overrides = _load_local_overrides(config_dir)
    if "settings" in local_overrides:
        config = _deep_merge(config, local_overrides["settings"])

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with PDPKIT_ and use
    double underscores for nested keys.

    Example:
        PDPKIT_SIGNALS__MIN_SCORE_TO_CONTINUE=12

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "PDPKIT_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or "__" not in key:
            continue

        key_path = key[len(prefix) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if part not in current or not isinstance(current[part], dict):
                current[part] = {}
            current = current[part]

        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files (settings.yaml, then local.yaml)
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get("PDPKIT_CONFIG_DIR", "config"))

    config = _load_yaml_config(config_dir)
    config = _apply_env_overrides(config)

    return Settings(**config)


def get_project_root() -> Path:
    """Get the project root directory."""
    # pdpkit/utils/config.py
    return Path(__file__).parent.parent.parent


def ensure_directories() -> None:
    """Ensure data and log directories exist."""
    settings = get_settings()
    root = get_project_root()

    for dir_path in (root / settings.general.data_dir, root / settings.general.logs_dir):
        dir_path.mkdir(parents=True, exist_ok=True)
