"""Tests for chainwatch/exceptions.py — exception hierarchy."""

from __future__ import annotations

import pytest

from chainwatch.exceptions import (
    AccountIndexOutOfRangeError,
    AccountResolutionError,
    ChainwatchError,
    ConfigError,
    ConfigInvalidError,
    ConfigMissingError,
    DatabaseError,
    DataError,
    DecodeError,
    FetchError,
    FetchTimeoutError,
    InvalidUtf8Error,
    NetworkError,
    NormalizationError,
    ReconnectExhaustedError,
    SinkError,
    SinkRateLimitError,
    StreamConnectionError,
    TruncatedPayloadError,
    UnresolvedAccountError,
)

# ── Hierarchy / exit codes ────────────────────────────────────────────────────


def test_chainwatch_error_base() -> None:
    e = ChainwatchError("base error")
    assert e.exit_code == 1
    assert e.error_code == "unknown_error"
    assert str(e) == "base error"
    assert e.details == {}


@pytest.mark.parametrize(
    "cls,parent,exit_code",
    [
        (TruncatedPayloadError, DecodeError, 4),
        (InvalidUtf8Error, DecodeError, 4),
        (AccountIndexOutOfRangeError, AccountResolutionError, 4),
        (UnresolvedAccountError, AccountResolutionError, 4),
        (NormalizationError, DataError, 4),
        (ReconnectExhaustedError, StreamConnectionError, 3),
        (FetchTimeoutError, FetchError, 3),
        (FetchError, NetworkError, 3),
        (SinkRateLimitError, SinkError, 2),
        (ConfigMissingError, ConfigError, 5),
        (ConfigInvalidError, ConfigError, 5),
        (DatabaseError, ChainwatchError, 6),
    ],
)
def test_hierarchy_and_exit_codes(cls: type, parent: type, exit_code: int) -> None:
    e = cls("boom")
    assert isinstance(e, parent)
    assert isinstance(e, ChainwatchError)
    assert e.exit_code == exit_code


def test_error_codes_are_distinct() -> None:
    classes = [
        TruncatedPayloadError, InvalidUtf8Error, AccountIndexOutOfRangeError,
        UnresolvedAccountError, NormalizationError, ReconnectExhaustedError,
        FetchTimeoutError, SinkRateLimitError, ConfigMissingError, ConfigInvalidError,
        DatabaseError,
    ]
    codes = [c.error_code for c in classes]
    assert len(set(codes)) == len(codes)


def test_sink_rate_limit_carries_retry_after() -> None:
    e = SinkRateLimitError("too many requests", retry_after=30)
    assert e.retry_after == 30
    assert e.details["retry_after_seconds"] == 30


def test_to_dict() -> None:
    e = ConfigMissingError("missing geyser url", details={"missing": ["provider.geyser_url"]})
    assert e.to_dict() == {
        "error": "config_missing",
        "message": "missing geyser url",
        "details": {"missing": ["provider.geyser_url"]},
    }
