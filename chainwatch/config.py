"""
Config loading for chainwatch.

Sources (in precedence order, highest first):
  1. Environment variables (CHAINWATCH_*)
  2. ~/.chainwatch/config.toml
  3. Built-in defaults

Values are validated once at load; require_for() checks that the endpoints
and credentials the selected watchers need are present. Both fail with a
ConfigError, which is fatal at startup and never raised at runtime.

Usage:
    from chainwatch.config import load_config, require_for
    config = load_config()
    require_for(config, ["mints"])
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Callable

import toml

from chainwatch.classifier import MIGRATION_ACCOUNT, PUMPFUN_PROGRAM, SYSTEM_PROGRAM
from chainwatch.exceptions import ConfigInvalidError, ConfigMissingError

# Default config directory and file
DEFAULT_CONFIG_DIR = Path.home() / ".chainwatch"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

HYPERLIQUID_WS_URL = "wss://api.hyperliquid.xyz/ws"

WATCHERS = ("mints", "transfers", "migrations", "whales")
VALID_COMMITMENTS = {"processed", "confirmed", "finalized"}
VALID_ENCODINGS = {"base64", "base58"}
VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _flag(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


# Environment variable → config key mapping
# Format: (env_var_name, dotted_config_path, type_converter)
_ENV_OVERRIDES: list[tuple[str, str, Callable[[str], Any]]] = [
    ("CHAINWATCH_GEYSER_URL", "provider.geyser_url", str),
    ("CHAINWATCH_GEYSER_TOKEN", "provider.geyser_token", str),
    ("CHAINWATCH_SOLANA_WS_URL", "provider.solana_ws_url", str),
    ("CHAINWATCH_SOLANA_HTTP_URL", "provider.solana_http_url", str),
    ("CHAINWATCH_HYPERLIQUID_WS_URL", "provider.hyperliquid_ws_url", str),
    ("CHAINWATCH_HYPEREVM_WS_URL", "provider.hyperevm_ws_url", str),
    ("CHAINWATCH_COMMITMENT", "provider.commitment", str),
    ("CHAINWATCH_TRACKED_SYMBOLS", "filters.tracked_symbols", _csv),
    ("CHAINWATCH_MIN_TRANSFER_SOL", "thresholds.min_transfer_sol", float),
    ("CHAINWATCH_WHALE_THRESHOLD_USD", "thresholds.whale_usd", float),
    ("CHAINWATCH_WHALE_THRESHOLD_SIZE", "thresholds.whale_size", float),
    ("CHAINWATCH_MAX_RECONNECT_ATTEMPTS", "reconnect.max_attempts", int),
    ("CHAINWATCH_TELEGRAM_BOT_TOKEN", "telegram.bot_token", str),
    ("CHAINWATCH_TELEGRAM_CHAT_ID", "telegram.chat_id", str),
    ("CHAINWATCH_TELEGRAM_BATCH", "telegram.batch_alerts", _flag),
    ("CHAINWATCH_TELEGRAM_BATCH_INTERVAL", "telegram.batch_interval_seconds", float),
    ("CHAINWATCH_WEBHOOK_URL", "webhook.url", str),
    ("CHAINWATCH_WEBHOOK_SECRET", "webhook.secret", str),
    ("CHAINWATCH_DB_PATH", "database.path", str),
    ("CHAINWATCH_LOG_LEVEL", "logging.level", str),
]


@dataclass
class ProviderConfig:
    """Stream and RPC endpoints. Credentials may also be embedded in the URLs."""

    geyser_url: str = ""                # websocket bridge speaking geyser JSON
    geyser_token: str = ""              # sent as x-token header
    solana_ws_url: str = ""             # JSON-RPC pubsub (logsSubscribe)
    solana_http_url: str = ""           # JSON-RPC (getTransaction)
    hyperliquid_ws_url: str = HYPERLIQUID_WS_URL
    hyperevm_ws_url: str = ""           # optional second whale feed
    commitment: str = "confirmed"
    bytes_encoding: str = "base64"      # how the geyser bridge encodes bytes


@dataclass
class FilterConfig:
    """Inclusion lists sent with each subscription."""

    mint_programs: list[str] = field(default_factory=lambda: [PUMPFUN_PROGRAM])
    transfer_programs: list[str] = field(default_factory=lambda: [SYSTEM_PROGRAM])
    migration_accounts: list[str] = field(default_factory=lambda: [MIGRATION_ACCOUNT])
    tracked_symbols: list[str] = field(
        default_factory=lambda: ["BTC", "ETH", "SOL", "ARB", "AVAX", "HYPE"]
    )


@dataclass
class ThresholdConfig:
    """Whale thresholds. All comparisons are inclusive."""

    min_transfer_sol: float = 100.0
    whale_usd: float = 100_000.0
    whale_size: float = 50.0
    mega_whale_usd: float = 500_000.0


@dataclass
class ReconnectConfig:
    """Exponential backoff: delay = min(base * 2^attempt, cap)."""

    base_seconds: float = 1.0
    cap_seconds: float = 30.0
    max_attempts: int = 10
    keepalive_seconds: float = 30.0     # client-side ping cadence; 0 disables


@dataclass
class TelegramConfig:
    """Telegram bot delivery."""

    bot_token: str = ""
    chat_id: str = ""
    parse_mode: str = "HTML"
    min_delay_seconds: float = 1.5
    batch_alerts: bool = False
    batch_interval_seconds: float = 600.0


@dataclass
class WebhookConfig:
    """Generic JSON webhook delivery."""

    url: str = ""
    secret: str = ""
    min_delay_seconds: float = 1.5


@dataclass
class StatsConfig:
    report_interval_seconds: float = 300.0
    top_whales: int = 10


@dataclass
class FetchConfig:
    """Deferred getTransaction lookups for log-detected migrations."""

    delay_seconds: float = 1.0
    timeout_seconds: float = 15.0
    seen_signatures: int = 10_000


@dataclass
class DatabaseConfig:
    """SQLite event store."""

    enabled: bool = True
    path: str = str(DEFAULT_CONFIG_DIR / "events.db")


@dataclass
class LoggingConfig:
    level: str = "INFO"
    serialize: bool = False


@dataclass
class ChainwatchConfig:
    """Full configuration object. Passed via Click context to all commands."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | None = None) -> ChainwatchConfig:
    """
    Load configuration from TOML file + environment variable overrides.

    Args:
        path: Override config file path. If None, uses CHAINWATCH_CONFIG_PATH
              env var or default (~/.chainwatch/config.toml).

    Returns:
        ChainwatchConfig with all values resolved.

    Raises:
        ConfigInvalidError: Config file exists but is invalid TOML or values.
    """
    config_path = _resolve_config_path(path)

    raw: dict = {}
    if config_path.exists():
        try:
            raw = toml.load(str(config_path))
        except toml.TomlDecodeError as e:
            raise ConfigInvalidError(f"Invalid TOML in {config_path}: {e}") from e

    config = _dict_to_config(raw)
    _apply_env_overrides(config)
    _validate_config(config)

    return config


def save_config(config: ChainwatchConfig, path: str | None = None) -> Path:
    """
    Serialize ChainwatchConfig to TOML and write to disk.

    Returns the path where config was written.
    """
    config_path = _resolve_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        toml.dump(asdict(config), f)

    return config_path


def get_default_config_path() -> Path:
    """Return the default config file path."""
    return DEFAULT_CONFIG_PATH


def set_config_value(config: ChainwatchConfig, dotted_key: str, value: str) -> Any:
    """
    Set one value by dotted key (e.g. thresholds.whale_usd), coerced to the field's type.

    Returns the stored value.

    Raises:
        ConfigInvalidError: Unknown key, uncoercible value, or the result fails validation.
    """
    section_name, _, field_name = dotted_key.partition(".")
    section = getattr(config, section_name, None) if field_name else None
    if section is None or not hasattr(section, "__dataclass_fields__"):
        raise ConfigInvalidError(
            f"Unknown config section in {dotted_key!r}; key must be section.field"
        )
    if field_name not in section.__dataclass_fields__:
        raise ConfigInvalidError(f"Unknown config key: {dotted_key!r}")

    previous = getattr(section, field_name)
    typed = _coerce(previous, value, dotted_key)
    setattr(section, field_name, typed)
    try:
        _validate_config(config)
    except ConfigInvalidError:
        setattr(section, field_name, previous)
        raise
    return typed


def require_for(config: ChainwatchConfig, watchers: list[str]) -> None:
    """
    Check that every value the selected watchers need is present.

    Raises:
        ConfigInvalidError: Unknown watcher name.
        ConfigMissingError: A required endpoint or credential is empty.
    """
    unknown = [w for w in watchers if w not in WATCHERS]
    if unknown:
        raise ConfigInvalidError(
            f"Unknown watcher(s): {unknown}. Valid: {list(WATCHERS)}",
            details={"watchers": unknown},
        )

    needed: list[str] = []
    if "mints" in watchers or "transfers" in watchers:
        needed.append("provider.geyser_url")
    if "migrations" in watchers:
        needed += ["provider.solana_ws_url", "provider.solana_http_url"]
    if "whales" in watchers:
        needed.append("provider.hyperliquid_ws_url")
        if not config.filters.tracked_symbols:
            raise ConfigMissingError(
                "filters.tracked_symbols must list at least one coin for the whales watcher"
            )

    missing = [key for key in needed if not _get(config, key)]
    if missing:
        raise ConfigMissingError(
            f"Missing required config value(s): {', '.join(missing)}",
            details={"missing": missing},
        )

    tg = config.telegram
    if bool(tg.bot_token) != bool(tg.chat_id):
        raise ConfigMissingError(
            "telegram.bot_token and telegram.chat_id must be set together",
            details={"missing": ["telegram.chat_id" if tg.bot_token else "telegram.bot_token"]},
        )


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _resolve_config_path(path: str | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("CHAINWATCH_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _get(config: ChainwatchConfig, dotted_key: str) -> Any:
    section, key = dotted_key.split(".", 1)
    return getattr(getattr(config, section), key)


def _coerce(current: Any, value: Any, key: str) -> Any:
    """Coerce a raw TOML value to the type of the field's default."""
    try:
        if isinstance(current, bool):
            if isinstance(value, str):
                return _flag(value)
            return bool(value)
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
        if isinstance(current, list):
            if isinstance(value, str):
                return _csv(value)
            if not isinstance(value, list):
                raise TypeError(f"expected a list, got {type(value).__name__}")
            return [str(v) for v in value]
        return str(value)
    except (ValueError, TypeError) as e:
        raise ConfigInvalidError(f"Invalid value for {key}: {value!r} ({e})") from e


def _dict_to_config(raw: dict) -> ChainwatchConfig:
    """Build ChainwatchConfig from raw TOML dict, applying defaults for missing keys."""
    config = ChainwatchConfig()
    for section_field in fields(config):
        section_raw = raw.get(section_field.name, {})
        if not isinstance(section_raw, dict):
            raise ConfigInvalidError(f"[{section_field.name}] must be a table")
        section = getattr(config, section_field.name)
        for f in fields(section):
            if f.name in section_raw:
                key = f"{section_field.name}.{f.name}"
                setattr(section, f.name, _coerce(getattr(section, f.name), section_raw[f.name], key))
    return config


def _apply_env_overrides(config: ChainwatchConfig) -> None:
    """Apply environment variable overrides to a loaded config."""
    if os.environ.get("CHAINWATCH_NO_DB"):
        config.database.enabled = False

    for env_var, dotted_key, converter in _ENV_OVERRIDES:
        val = os.environ.get(env_var)
        if val is None:
            continue
        section, key = dotted_key.split(".", 1)
        section_obj = getattr(config, section)
        try:
            setattr(section_obj, key, converter(val))
        except (ValueError, TypeError) as e:
            raise ConfigInvalidError(
                f"Invalid value for {env_var}={val!r}: {e}"
            ) from e


def _validate_config(config: ChainwatchConfig) -> None:
    """Validate config values. Raises ConfigInvalidError on invalid values."""
    if config.provider.commitment not in VALID_COMMITMENTS:
        raise ConfigInvalidError(
            f"provider.commitment must be one of {sorted(VALID_COMMITMENTS)}, "
            f"got {config.provider.commitment!r}"
        )
    if config.provider.bytes_encoding not in VALID_ENCODINGS:
        raise ConfigInvalidError(
            f"provider.bytes_encoding must be one of {sorted(VALID_ENCODINGS)}, "
            f"got {config.provider.bytes_encoding!r}"
        )
    for key in ("min_transfer_sol", "whale_usd", "whale_size", "mega_whale_usd"):
        if getattr(config.thresholds, key) < 0:
            raise ConfigInvalidError(f"thresholds.{key} must be non-negative")
    rc = config.reconnect
    if rc.base_seconds <= 0 or rc.cap_seconds < rc.base_seconds:
        raise ConfigInvalidError(
            f"reconnect requires 0 < base_seconds <= cap_seconds, "
            f"got base={rc.base_seconds} cap={rc.cap_seconds}"
        )
    if rc.max_attempts < 0:
        raise ConfigInvalidError("reconnect.max_attempts must be non-negative")
    if config.telegram.min_delay_seconds < 0 or config.webhook.min_delay_seconds < 0:
        raise ConfigInvalidError("min_delay_seconds must be non-negative")
    if config.telegram.batch_interval_seconds <= 0:
        raise ConfigInvalidError("telegram.batch_interval_seconds must be positive")
    if config.stats.report_interval_seconds <= 0:
        raise ConfigInvalidError("stats.report_interval_seconds must be positive")
    if config.logging.level.upper() not in VALID_LOG_LEVELS:
        raise ConfigInvalidError(
            f"logging.level must be one of {sorted(VALID_LOG_LEVELS)}, got {config.logging.level!r}"
        )
