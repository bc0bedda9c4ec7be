"""
Clarify Centralized Configuration

Loads settings from config/settings.toml, applies environment variable
overrides, and exposes a thread-safe singleton via get_config().

The arbitration core never reads this module directly. Hosts build a
FeatureFlags / Thresholds pair from the config once and pass them into
the orchestrators at construction.

Usage:
    from clarify.config import get_config, FeatureFlags, Thresholds

    config = get_config()
    flags = FeatureFlags.from_config(config)
    thresholds = Thresholds.from_config(config)
    config.reload()                       # hot-reload from disk
"""

import logging
import os
import threading
import tomllib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("clarify.config")


# ---------------------------------------------------------------------------
# Hardcoded fallback defaults, used when settings.toml is missing
# ---------------------------------------------------------------------------

_DEFAULTS: dict[str, Any] = {
    "features": {
        "llm_fallback_enabled": False,
        "context_retry_enabled": False,
        "auto_execute_enabled": False,
        "selection_continuity_lane_enabled": False,
    },
    "thresholds": {
        "min_confidence_select": 0.6,
        "min_confidence_ask": 0.4,
        "auto_execute_confidence": 0.85,
    },
    "llm": {
        "model": "claude-haiku-4-5",
        "timeout_seconds": 0.8,
        "max_tokens": 150,
        "temperature": 0.1,
        "contract_version": "2.0",
        "max_needed_context_items": 2,
    },
    "routing_log": {
        "max_events": 500,
    },
    "api": {
        "host": "127.0.0.1",
        "port": 8090,
        "api_key": "",
    },
}


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


# Environment variable overrides: CLARIFY_<SECTION>_<KEY> → value
# Only flat (non-nested) keys are supported via env vars.
_ENV_OVERRIDES: list[tuple[str, str, Any]] = [
    ("CLARIFY_LLM_FALLBACK_ENABLED",       "features.llm_fallback_enabled",              _as_bool),
    ("CLARIFY_CONTEXT_RETRY_ENABLED",      "features.context_retry_enabled",             _as_bool),
    ("CLARIFY_AUTO_EXECUTE_ENABLED",       "features.auto_execute_enabled",              _as_bool),
    ("CLARIFY_CONTINUITY_LANE_ENABLED",    "features.selection_continuity_lane_enabled", _as_bool),
    ("CLARIFY_LLM_MODEL",                  "llm.model",                                  str),
    ("CLARIFY_LLM_TIMEOUT_SECONDS",        "llm.timeout_seconds",                        float),
    ("CLARIFY_ROUTING_LOG_MAX_EVENTS",     "routing_log.max_events",                     int),
    ("CLARIFY_API_HOST",                   "api.host",                                   str),
    ("CLARIFY_API_PORT",                   "api.port",                                   int),
    ("CLARIFY_API_KEY",                    "api.api_key",                                str),
]


# ---------------------------------------------------------------------------
# ConfigSection: dot-access wrapper for nested dicts
# ---------------------------------------------------------------------------

class ConfigSection:
    """Wraps a dict so values are accessible as attributes.

    Nested dicts become nested ConfigSections automatically.

        section = ConfigSection({"port": 8090, "nested": {"key": "val"}})
        section.port        # 8090
        section.nested.key  # "val"
    """

    def __init__(self, data: dict[str, Any]):
        self._data = data

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            return super().__getattribute__(name)
        try:
            value = self._data[name]
        except KeyError:
            raise AttributeError(
                f"Config has no key '{name}'. Available: {list(self._data.keys())}"
            )
        if isinstance(value, dict):
            return ConfigSection(value)
        return value

    def __repr__(self) -> str:
        return f"ConfigSection({self._data!r})"

    def to_dict(self) -> dict[str, Any]:
        """Return the underlying dict (with nested dicts, not ConfigSections)."""
        return self._data


# ---------------------------------------------------------------------------
# ClarifyConfig: main config object
# ---------------------------------------------------------------------------

class ClarifyConfig:
    """Loads and manages clarification-core configuration.

    Reads config/settings.toml relative to the project root, merges
    with hardcoded defaults, applies environment variable overrides.

    Attributes are accessed via dot-notation through ConfigSection:
        config.features.llm_fallback_enabled
        config.llm.timeout_seconds
    """

    def __init__(self, config_path: str | Path | None = None):
        self._lock = threading.Lock()
        self._config_path = self._resolve_path(config_path)
        self._data: dict[str, Any] = {}
        self.last_loaded: str = ""
        self._load()

    @staticmethod
    def _resolve_path(config_path: str | Path | None) -> Path:
        """Resolve the config file path, defaulting to config/settings.toml."""
        if config_path is not None:
            return Path(config_path)
        # Walk up from this file (clarify/config.py) to find the project root
        project_root = Path(__file__).resolve().parent.parent
        return project_root / "config" / "settings.toml"

    def _load(self):
        """Load config from TOML, merge with defaults, apply env overrides."""
        data = _deep_copy(_DEFAULTS)

        if self._config_path.exists():
            try:
                with open(self._config_path, "rb") as f:
                    toml_data = tomllib.load(f)
                _deep_merge(data, toml_data)
                logger.info("Configuration loaded from %s", self._config_path)
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.warning(
                    "Failed to read %s: %s, using fallback defaults",
                    self._config_path, e,
                )
        else:
            logger.warning(
                "Config file not found at %s, using fallback defaults",
                self._config_path,
            )

        for env_var, dotpath, cast in _ENV_OVERRIDES:
            env_val = os.environ.get(env_var)
            if env_val is not None:
                try:
                    _set_nested(data, dotpath, cast(env_val))
                    logger.info("Env override: %s=%s", env_var, env_val)
                except (ValueError, TypeError) as e:
                    logger.warning("Invalid env override %s=%s: %s", env_var, env_val, e)

        self._data = data
        self.last_loaded = datetime.now(timezone.utc).isoformat()

    def reload(self) -> dict[str, Any]:
        """Reload configuration from disk.

        Returns a dict of changed values for logging, e.g.:
            {"features.context_retry_enabled": {"old": False, "new": True}}

        Orchestrators hold the FeatureFlags they were built with, so a
        reload only takes effect for sessions created afterwards.
        """
        with self._lock:
            old_data = _deep_copy(self._data)
            self._load()
            changes = _diff_dicts(old_data, self._data)
            if changes:
                logger.info("Configuration reloaded: %d change(s)", len(changes))
            else:
                logger.info("Configuration reloaded: no changes")
            return changes

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name in ("last_loaded", "reload", "to_dict"):
            return super().__getattribute__(name)
        try:
            data = super().__getattribute__("_data")
        except AttributeError:
            raise AttributeError(name)
        try:
            value = data[name]
        except KeyError:
            raise AttributeError(
                f"Config has no section '{name}'. Available: {list(data.keys())}"
            )
        if isinstance(value, dict):
            return ConfigSection(value)
        return value

    def to_dict(self) -> dict[str, Any]:
        """Return the full config as a plain dict (JSON-serializable)."""
        return _deep_copy(self._data)


# ---------------------------------------------------------------------------
# Explicit structs handed to the core
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeatureFlags:
    """Feature switches recognized by the arbitration core.

    Attributes:
        llm_fallback_enabled:              Allow the bounded LLM call at all
        context_retry_enabled:             Allow one enrichment retry on request_context
        auto_execute_enabled:              Let high-confidence LLM picks execute directly
        selection_continuity_lane_enabled: Allow continuity to resolve without the LLM
    """
    llm_fallback_enabled: bool = False
    context_retry_enabled: bool = False
    auto_execute_enabled: bool = False
    selection_continuity_lane_enabled: bool = False

    @classmethod
    def from_config(cls, config: ClarifyConfig | None = None) -> "FeatureFlags":
        features = (config or get_config()).features
        return cls(
            llm_fallback_enabled=bool(features.llm_fallback_enabled),
            context_retry_enabled=bool(features.context_retry_enabled),
            auto_execute_enabled=bool(features.auto_execute_enabled),
            selection_continuity_lane_enabled=bool(features.selection_continuity_lane_enabled),
        )


@dataclass(frozen=True)
class Thresholds:
    """Empirically tuned confidence cut-offs for LLM decisions."""
    min_confidence_select: float = 0.6
    min_confidence_ask: float = 0.4
    auto_execute_confidence: float = 0.85

    @classmethod
    def from_config(cls, config: ClarifyConfig | None = None) -> "Thresholds":
        section = (config or get_config()).thresholds
        return cls(
            min_confidence_select=float(section.min_confidence_select),
            min_confidence_ask=float(section.min_confidence_ask),
            auto_execute_confidence=float(section.auto_execute_confidence),
        )


@dataclass(frozen=True)
class LLMSettings:
    """Settings for the clarification LLM boundary."""
    model: str = "claude-haiku-4-5"
    timeout_seconds: float = 0.8
    max_tokens: int = 150
    temperature: float = 0.1
    contract_version: str = "2.0"
    max_needed_context_items: int = 2

    @classmethod
    def from_config(cls, config: ClarifyConfig | None = None) -> "LLMSettings":
        section = (config or get_config()).llm
        return cls(
            model=str(section.model),
            timeout_seconds=float(section.timeout_seconds),
            max_tokens=int(section.max_tokens),
            temperature=float(section.temperature),
            contract_version=str(section.contract_version),
            max_needed_context_items=int(section.max_needed_context_items),
        )


# ---------------------------------------------------------------------------
# Thread-safe singleton
# ---------------------------------------------------------------------------

_instance: ClarifyConfig | None = None
_instance_lock = threading.Lock()


def get_config(config_path: str | Path | None = None) -> ClarifyConfig:
    """Return the global ClarifyConfig singleton.

    Thread-safe. The first call creates the instance; subsequent calls
    return the same object. Pass config_path only on first call to
    override the default location.
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = ClarifyConfig(config_path=config_path)
    return _instance


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Simple deep copy for nested dicts of primitives."""
    out = {}
    for k, v in d.items():
        if isinstance(v, dict):
            out[k] = _deep_copy(v)
        elif isinstance(v, list):
            out[k] = list(v)
        else:
            out[k] = v
    return out


def _deep_merge(base: dict, override: dict):
    """Merge override into base in-place. Nested dicts are merged recursively."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _set_nested(data: dict, dotpath: str, value: Any):
    """Set a value in a nested dict using a dot-separated path.

    _set_nested(d, "features.llm_fallback_enabled", True)
    → d["features"]["llm_fallback_enabled"] = True
    """
    keys = dotpath.split(".")
    target = data
    for key in keys[:-1]:
        target = target.setdefault(key, {})
    target[keys[-1]] = value


def _diff_dicts(old: dict, new: dict, prefix: str = "") -> dict[str, dict]:
    """Return a dict of changed values between two nested dicts.

    Returns: {"dotpath": {"old": ..., "new": ...}}
    """
    changes = {}
    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        dotpath = f"{prefix}.{key}" if prefix else key
        old_val = old.get(key)
        new_val = new.get(key)
        if isinstance(old_val, dict) and isinstance(new_val, dict):
            changes.update(_diff_dicts(old_val, new_val, dotpath))
        elif old_val != new_val:
            changes[dotpath] = {"old": old_val, "new": new_val}
    return changes
