"""
Custom exception hierarchy for chainwatch.

Each exception carries an exit code and a JSON error_code field.
cli.py catches ChainwatchError subclasses and formats them as JSON on stderr;
the streaming pipeline catches the per-instruction and per-record ones and
logs them without aborting.

Exit code mapping:
  1 — ChainwatchError (generic error)
  2 — SinkError (notification delivery failed)
  3 — StreamConnectionError / FetchError (transport failure)
  4 — DecodeError / AccountResolutionError / NormalizationError (bad data)
  5 — ConfigError (missing/malformed config)
  6 — DatabaseError (SQLite failure)
"""


class ChainwatchError(Exception):
    """Base exception for all chainwatch errors."""

    exit_code: int = 1
    error_code: str = "unknown_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class DataError(ChainwatchError):
    """Provider data could not be turned into a domain event."""

    exit_code = 4
    error_code = "data_error"


class DecodeError(DataError):
    """Malformed or truncated instruction payload."""

    error_code = "decode_error"


class TruncatedPayloadError(DecodeError):
    """Fewer bytes remain than the field being decoded needs."""

    error_code = "decode_truncated"


class InvalidUtf8Error(DecodeError):
    """Length-prefixed string bytes are not valid UTF-8."""

    error_code = "decode_invalid_utf8"


class AccountResolutionError(DataError):
    """An instruction's account reference could not be mapped to an address."""

    error_code = "account_resolution_error"


class AccountIndexOutOfRangeError(AccountResolutionError):
    """Instruction references an index beyond the transaction's account list."""

    error_code = "account_index_out_of_range"


class UnresolvedAccountError(AccountResolutionError):
    """Index points into lookup-table entries that were not supplied."""

    error_code = "account_unresolved"


class NormalizationError(DataError):
    """Provider frame is missing fields required to build a view."""

    error_code = "normalization_error"


class NetworkError(ChainwatchError):
    """Transport-level failure talking to a provider."""

    exit_code = 3
    error_code = "network_error"


class StreamConnectionError(NetworkError):
    """Streaming connection dropped or could not be opened."""

    error_code = "stream_connection_error"


class ReconnectExhaustedError(StreamConnectionError):
    """Reconnect attempts exceeded the configured maximum."""

    error_code = "reconnect_exhausted"


class FetchError(NetworkError):
    """Full-transaction lookup failed."""

    error_code = "fetch_error"


class FetchTimeoutError(FetchError):
    """Full-transaction lookup timed out."""

    error_code = "fetch_timeout"


class SinkError(ChainwatchError):
    """Notification sink rejected or failed a delivery."""

    exit_code = 2
    error_code = "sink_error"


class SinkRateLimitError(SinkError):
    """Sink asked us to slow down."""

    error_code = "sink_rate_limited"

    def __init__(self, message: str, retry_after: float = 5.0, **kwargs) -> None:
        super().__init__(message, details={"retry_after_seconds": retry_after})
        self.retry_after = retry_after


class ConfigError(ChainwatchError):
    """Config file is missing or malformed."""

    exit_code = 5
    error_code = "config_error"


class ConfigMissingError(ConfigError):
    """A value required by the selected watchers was not supplied."""

    error_code = "config_missing"


class ConfigInvalidError(ConfigError):
    """Config file exists but contains invalid TOML or invalid values."""

    error_code = "config_invalid"


class DatabaseError(ChainwatchError):
    """SQLite operation failed."""

    exit_code = 6
    error_code = "db_error"
