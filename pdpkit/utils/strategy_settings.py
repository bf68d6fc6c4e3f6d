"""
Strategy settings store.

Persists StrategySettings (global strategy id, per-domain overrides and the
host allowlist) in a YAML file:

    global: heuristics
    perDomain:
      - pattern: "*.example.com"
        strategyId: structured_data
    allowlist: []

A missing file yields defaults ({global: <default id>, perDomain: []}).
The file is re-read when its mtime changes.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from pdpkit.utils.config import get_settings
from pdpkit.utils.logging import get_logger
from pdpkit.utils.schemas import DomainStrategyRule, StrategySettings

logger = get_logger(__name__)


class StrategySettingsStore:
    """YAML-backed StrategySettings with hot reload."""

    _instance: StrategySettingsStore | None = None
    _lock = threading.Lock()

    def __init__(
        self,
        config_path: Path | str | None = None,
        default_id: str | None = None,
        watch_interval: float = 5.0,
    ):
        settings = get_settings().strategy
        self._config_path = Path(config_path or settings.settings_path)
        self._default_id = default_id or settings.default_id
        self._watch_interval = watch_interval

        self._settings: StrategySettings | None = None
        self._last_mtime = 0.0
        self._last_check = 0.0
        self._load()

    @classmethod
    def get_instance(cls, **kwargs: Any) -> StrategySettingsStore:
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(**kwargs)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (for testing)."""
        with cls._lock:
            cls._instance = None

    def _defaults(self) -> StrategySettings:
        return StrategySettings(global_id=self._default_id, per_domain=[])

    def _load(self) -> None:
        if not self._config_path.exists():
            self._settings = self._defaults()
            return

        try:
            with open(self._config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            self._settings = StrategySettings.model_validate(data)
            self._last_mtime = self._config_path.stat().st_mtime
            logger.info(
                "Strategy settings loaded",
                path=str(self._config_path),
                global_id=self._settings.global_id,
                per_domain_count=len(self._settings.per_domain),
                allowlist_count=len(self._settings.allowlist),
            )
        except (yaml.YAMLError, ValidationError, OSError) as e:
            logger.error(
                "Failed to load strategy settings",
                path=str(self._config_path),
                error=str(e),
            )
            if self._settings is None:
                self._settings = self._defaults()

    def _check_reload(self) -> None:
        now = time.time()
        if now - self._last_check < self._watch_interval:
            return
        self._last_check = now
        try:
            if self._config_path.exists() and self._config_path.stat().st_mtime > self._last_mtime:
                logger.info("Strategy settings changed, reloading")
                self._load()
        except OSError as e:
            logger.warning("Failed to check strategy settings mtime", error=str(e))

    def reload(self) -> None:
        """Force reload from disk."""
        self._load()

    @property
    def settings(self) -> StrategySettings:
        """Current settings (with hot-reload check)."""
        self._check_reload()
        assert self._settings is not None
        return self._settings

    def __call__(self) -> StrategySettings:
        return self.settings

    @property
    def allowlist(self) -> list[str]:
        return list(self.settings.allowlist)

    def save(self, settings: StrategySettings) -> None:
        """Persist settings and make them current."""
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        data = settings.model_dump(by_alias=True)
        with open(self._config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        self._settings = settings
        self._last_mtime = self._config_path.stat().st_mtime
        logger.info("Strategy settings saved", path=str(self._config_path))

    def set_domain_strategy(self, pattern: str, strategy_id: str) -> StrategySettings:
        """Add or replace the per-domain rule for `pattern`."""
        current = self.settings
        rules = [r for r in current.per_domain if r.pattern != pattern]
        rules.append(DomainStrategyRule(pattern=pattern, strategy_id=strategy_id))
        updated = current.model_copy(update={"per_domain": rules})
        self.save(updated)
        return updated

    def set_global_strategy(self, strategy_id: str) -> StrategySettings:
        updated = self.settings.model_copy(update={"global_id": strategy_id})
        self.save(updated)
        return updated

    def clear_domain_strategies(self) -> StrategySettings:
        updated = self.settings.model_copy(update={"per_domain": []})
        self.save(updated)
        return updated


def get_strategy_settings_store(**kwargs: Any) -> StrategySettingsStore:
    """Get the global StrategySettingsStore."""
    return StrategySettingsStore.get_instance(**kwargs)


def reset_strategy_settings_store() -> None:
    """Reset the global StrategySettingsStore (for testing)."""
    StrategySettingsStore.reset_instance()
