"""Settings for the ticker poller, loaded once at startup from TOML + environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import structlog
import toml

from poller.errors import ConfigError
from poller.utils.time import interval_to_ms

log = structlog.get_logger("config")

DEFAULT_CONFIG_PATH = "pollersettings.toml"
MIN_REFRESH_SECONDS = 4
TRUTHY = ("1", "true", "yes", "on")


@dataclass(slots=True)
class JitterSettings:
    enabled: bool = True
    max_millis: int = 500


@dataclass(slots=True)
class RedisSettings:
    url: str = "redis://localhost:6379/0"
    retention_ms: int = 30 * 86_400_000
    key_prefix: str = "kline"


@dataclass(slots=True)
class Settings:
    """
    exchange:            venue name understood by the exchange registry
    instance:            tag stored alongside every candle
    refresh_seconds:     poll period, floored at MIN_REFRESH_SECONDS
    symbols:             full universe, polled batch_size at a time
    blacklisted_symbols: upper-cased symbols never polled
    intervals:           candle widths kept by the aggregator ("1m", "5m", ...)
    """
    exchange: str
    symbols: list[str]
    instance: str = "default"
    refresh_seconds: int = MIN_REFRESH_SECONDS
    batch_size: int = 50
    intervals: list[str] = field(default_factory=lambda: ["1m"])
    blacklisted_symbols: list[str] = field(default_factory=list)
    debug: bool = False
    jitter: JitterSettings = field(default_factory=JitterSettings)
    redis: RedisSettings = field(default_factory=RedisSettings)

    def interval_map(self) -> dict[str, int]:
        return {name: interval_to_ms(name) for name in self.intervals}


# ---------------------------------------------------------------------------
# parsing
# ---------------------------------------------------------------------------

def _str_list(raw: Mapping[str, Any], key: str) -> list[str]:
    value = raw.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{key} must be a list of strings")
    return [v.strip() for v in value if v.strip()]


def _int(raw: Mapping[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool(raw: Mapping[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false")
    return value


def settings_from_dict(raw: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> Settings:
    """Validate a parsed TOML document and apply environment overrides."""
    env = os.environ if env is None else env

    exchange = env.get("POLLER_EXCHANGE") or raw.get("exchange")
    if not isinstance(exchange, str) or not exchange.strip():
        raise ConfigError("exchange is required")

    symbols = _str_list(raw, "symbols")
    if not symbols:
        raise ConfigError("symbols must list at least one symbol")

    refresh = _int(raw, "refresh_seconds", MIN_REFRESH_SECONDS)
    if refresh < MIN_REFRESH_SECONDS:
        log.warning("refresh_seconds_floored", configured=refresh, used=MIN_REFRESH_SECONDS)
        refresh = MIN_REFRESH_SECONDS

    batch_size = _int(raw, "batch_size", 50)
    if batch_size < 1:
        raise ConfigError("batch_size must be >= 1")

    intervals = _str_list(raw, "intervals") if "intervals" in raw else ["1m"]
    if not intervals:
        raise ConfigError("intervals must not be empty")
    for name in intervals:
        try:
            interval_to_ms(name)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

    debug = _bool(raw, "debug", False)
    if "POLLER_DEBUG" in env:
        debug = env["POLLER_DEBUG"].lower() in TRUTHY

    jitter_raw = raw.get("jitter", {}) or {}
    redis_raw = raw.get("redis", {}) or {}
    if not isinstance(jitter_raw, dict) or not isinstance(redis_raw, dict):
        raise ConfigError("[jitter] and [redis] must be tables")

    jitter = JitterSettings(
        enabled=_bool(jitter_raw, "enabled", True),
        max_millis=_int(jitter_raw, "max_millis", 500),
    )
    defaults = RedisSettings()
    redis = RedisSettings(
        url=env.get("REDIS_URL", redis_raw.get("url", defaults.url)),
        retention_ms=_int(redis_raw, "retention_ms", defaults.retention_ms),
        key_prefix=str(redis_raw.get("key_prefix", defaults.key_prefix)),
    )

    return Settings(
        exchange=exchange.strip().lower(),
        symbols=symbols,
        instance=env.get("POLLER_INSTANCE") or str(raw.get("instance", "default")),
        refresh_seconds=refresh,
        batch_size=batch_size,
        intervals=intervals,
        blacklisted_symbols=[s.upper() for s in _str_list(raw, "blacklisted_symbols")],
        debug=debug,
        jitter=jitter,
        redis=redis,
    )


def config_path_from_env(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    return Path(env.get("POLLER_CONFIG", DEFAULT_CONFIG_PATH))


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    path = path or config_path_from_env(env)
    try:
        raw = toml.load(path)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except toml.TomlDecodeError as exc:
        raise ConfigError(f"failed to parse {path}: {exc}") from exc
    settings = settings_from_dict(raw, env)
    log.info("settings_loaded", path=str(path), exchange=settings.exchange, symbols=len(settings.symbols))
    return settings


# ---------------------------------------------------------------------------
# persistence
# ---------------------------------------------------------------------------

class SettingsStore:
    """Writes runtime changes (currently the blacklist) back into the TOML file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def save_blacklist(self, symbols: Iterable[str]) -> None:
        """Rewrite `blacklisted_symbols`, leaving every other key untouched."""
        raw: dict[str, Any] = toml.load(self.path) if self.path.exists() else {}
        raw["blacklisted_symbols"] = sorted({s.upper() for s in symbols})
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w") as f:
            toml.dump(raw, f)
        os.replace(tmp, self.path)
