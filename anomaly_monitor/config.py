from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from market_data.binance import BINANCE_FUTURES_BASE_URL, MAX_HISTORY, interval_to_milliseconds

from .ai_client import AIAnalysisConfig
from .detectors import DetectorThresholds
from .suppression import SUPPRESSION_BACKENDS

DEFAULT_INTERVAL = "15m"
DEFAULT_LOOKBACK = 96
DEFAULT_SUPPRESSION_TTL = 3600
DEFAULT_STATE_FILE = Path("./data/suppression_state.json")


class ConfigurationError(ValueError):
    """Required settings are missing or invalid; nothing should run."""


@dataclass(frozen=True)
class MonitorConfig:
    """Immutable settings for one monitor process, built once at startup."""

    webhook_url: str
    symbols: Tuple[str, ...]
    ai: Optional[AIAnalysisConfig] = None
    interval: str = DEFAULT_INTERVAL
    lookback: int = DEFAULT_LOOKBACK
    suppression_ttl_seconds: int = DEFAULT_SUPPRESSION_TTL
    suppression_backend: str = "memory"
    state_file: Path = DEFAULT_STATE_FILE
    database_url: str | None = None
    utc_offset_hours: float = 8.0
    binance_base_url: str = BINANCE_FUTURES_BASE_URL
    proxy: str | None = None
    poll_epsilon_minutes: float = 0.1
    dry_run: bool = False
    thresholds: DetectorThresholds = field(default_factory=DetectorThresholds)

    def __post_init__(self) -> None:
        if not self.webhook_url.strip():
            raise ConfigurationError("LARK_WEBHOOK_URL is required.")
        if not any(symbol.strip() for symbol in self.symbols):
            raise ConfigurationError("SYMBOLS must list at least one symbol.")
        try:
            interval_to_milliseconds(self.interval)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        if not 2 <= self.lookback <= MAX_HISTORY:
            raise ConfigurationError(f"lookback must be within 2..{MAX_HISTORY} intervals.")
        if self.suppression_ttl_seconds <= 0:
            raise ConfigurationError("suppression TTL must be positive.")
        if self.suppression_backend not in SUPPRESSION_BACKENDS:
            raise ConfigurationError(
                f"Unsupported suppression backend {self.suppression_backend!r} "
                f"(expected one of {', '.join(SUPPRESSION_BACKENDS)})."
            )
        if self.suppression_backend == "postgres" and not self.database_url:
            raise ConfigurationError("SUPPRESSION_DATABASE_URL is required for the postgres backend.")
        if self.poll_epsilon_minutes < 0:
            raise ConfigurationError("poll_epsilon_minutes cannot be negative.")
        if not -12 <= self.utc_offset_hours <= 14:
            raise ConfigurationError("DISPLAY_UTC_OFFSET_HOURS must be within -12..14.")

    @property
    def ai_enabled(self) -> bool:
        return self.ai is not None


def parse_symbols(value: str | None) -> Tuple[str, ...]:
    if not value:
        return ()
    seen: Dict[str, None] = {}
    for token in value.split(","):
        symbol = token.strip().upper()
        if symbol:
            seen.setdefault(symbol, None)
    return tuple(seen)


def load_env_config(environ: Mapping[str, str] | None = None, env_file: Path | None = None) -> Dict[str, str]:
    """Collect recognised settings; process environment wins over the env file."""
    file_values = _load_env_file(env_file)
    source = os.environ if environ is None else environ

    def get(name: str) -> str:
        return source.get(name, file_values.get(name, "")).strip()

    return {
        "webhook_url": get("LARK_WEBHOOK_URL"),
        "symbols": get("SYMBOLS"),
        "ai_endpoint": get("OPENAI_COMPATIBLE_ENDPOINT"),
        "ai_model": get("AI_MODEL_NAME"),
        "api_key": get("API_KEY"),
        "ttl": get("SUPPRESSION_TTL_SECONDS"),
        "interval": get("DATA_INTERVAL"),
        "lookback": get("LOOKBACK_PERIODS"),
        "suppression_backend": get("SUPPRESSION_BACKEND"),
        "state_file": get("SUPPRESSION_STATE_FILE"),
        "database_url": get("SUPPRESSION_DATABASE_URL"),
        "utc_offset_hours": get("DISPLAY_UTC_OFFSET_HOURS"),
        "binance_base_url": get("BINANCE_FUTURES_BASE_URL"),
        "proxy": get("HTTP_PROXY_URL"),
    }


def load_config(
    environ: Mapping[str, str] | None = None,
    *,
    env_file: Path | None = None,
    **overrides: Any,
) -> MonitorConfig:
    """Build the monitor configuration; explicit overrides (e.g. CLI flags) win over the environment.

    Raises ``ConfigurationError`` when required settings are missing or malformed.
    """
    values: Dict[str, Any] = {key: value for key, value in load_env_config(environ, env_file).items() if value}
    values.update({key: value for key, value in overrides.items() if value is not None and value != ""})

    symbols = values.get("symbols", ())
    if isinstance(symbols, str):
        symbols = parse_symbols(symbols)

    ai = AIAnalysisConfig.from_values(values.get("ai_endpoint"), values.get("ai_model"), values.get("api_key"))

    try:
        return MonitorConfig(
            webhook_url=str(values.get("webhook_url", "")),
            symbols=tuple(symbols),
            ai=ai,
            interval=str(values.get("interval", DEFAULT_INTERVAL)),
            lookback=int(values.get("lookback", DEFAULT_LOOKBACK)),
            suppression_ttl_seconds=int(values.get("ttl", DEFAULT_SUPPRESSION_TTL)),
            suppression_backend=str(values.get("suppression_backend", "memory")).strip().lower(),
            state_file=Path(values.get("state_file", DEFAULT_STATE_FILE)),
            database_url=values.get("database_url"),
            utc_offset_hours=float(values.get("utc_offset_hours", 8.0)),
            binance_base_url=str(values.get("binance_base_url", BINANCE_FUTURES_BASE_URL)),
            proxy=values.get("proxy"),
            poll_epsilon_minutes=float(values.get("poll_epsilon_minutes", 0.1)),
            dry_run=bool(values.get("dry_run", False)),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration value: {exc}") from exc


def _load_env_file(path: Path | None) -> Dict[str, str]:
    if path is None or not path.exists() or not path.is_file():
        return {}

    values: Dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            values[key] = value
    return values
