"""Pytest fixtures shared across all chainwatch tests."""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any

import base58
import pytest
from loguru import logger

from chainwatch.classifier import CREATE_DISCRIMINATOR, PUMPFUN_PROGRAM, SYSTEM_PROGRAM
from chainwatch.config import (
    ChainwatchConfig,
    DatabaseConfig,
    ProviderConfig,
    ReconnectConfig,
)
from chainwatch.db import Database
from chainwatch.decoder import encode_string

# ── Addresses ─────────────────────────────────────────────────────────────────


def make_key(seed: int) -> str:
    """Deterministic 32-byte base58 address."""
    return base58.b58encode(bytes([seed]) * 32).decode()


def make_signature(seed: int) -> str:
    return base58.b58encode(bytes([seed]) * 64).decode()


def b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode()


def b64_key(address: str) -> str:
    return b64(base58.b58decode(address))


# ── Config fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def sample_config() -> ChainwatchConfig:
    """Config with every endpoint set and no notification sinks."""
    return ChainwatchConfig(
        provider=ProviderConfig(
            geyser_url="wss://geyser.example.com/ws",
            geyser_token="geyser_token_12345",
            solana_ws_url="wss://rpc.example.com",
            solana_http_url="https://rpc.example.com",
            hyperevm_ws_url="",
        ),
        reconnect=ReconnectConfig(base_seconds=0.001, cap_seconds=0.002, max_attempts=3, keepalive_seconds=0),
        database=DatabaseConfig(enabled=False, path=":memory:"),
    )


@pytest.fixture
def isolated_env(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Point config discovery at an empty temp dir and clear CHAINWATCH_* vars."""
    import os

    for var in list(os.environ):
        if var.startswith("CHAINWATCH_"):
            monkeypatch.delenv(var, raising=False)
    config_path = tmp_path / "config.toml"
    monkeypatch.setenv("CHAINWATCH_CONFIG_PATH", str(config_path))
    return config_path


# ── DB fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture
async def in_memory_db() -> Database:
    """In-memory SQLite DB with schema applied."""
    db = Database(":memory:")
    await db.connect()
    yield db
    await db.close()


# ── Geyser frame builders ─────────────────────────────────────────────────────


def pumpfun_create_data(name: str = "Moon Cat", symbol: str = "MCAT", uri: str = "https://ipfs.io/ipfs/Qm1") -> bytes:
    return CREATE_DISCRIMINATOR + encode_string(name) + encode_string(symbol) + encode_string(uri)


def transfer_data(lamports: int) -> bytes:
    return (2).to_bytes(4, "little") + lamports.to_bytes(8, "little")


def geyser_update(
    account_keys: list[str],
    instructions: list[dict[str, Any]],
    signature_seed: int = 7,
    slot: int = 250_000_000,
    err: Any = None,
    filters: list[str] | None = None,
    **message_extra: Any,
) -> dict[str, Any]:
    """A transaction update as a geyser websocket bridge delivers it (proto3 JSON)."""
    message = {
        "accountKeys": [b64_key(k) for k in account_keys],
        "instructions": [
            {
                "programIdIndex": ix["program"],
                "accounts": b64(bytes(ix["accounts"])),
                "data": b64(ix["data"]),
            }
            for ix in instructions
        ],
        **message_extra,
    }
    return {
        "filters": filters or ["mints"],
        "transaction": {
            "slot": str(slot),
            "transaction": {
                "signature": b64(bytes([signature_seed]) * 64),
                "transaction": {"message": message},
                "meta": {"err": err},
            },
        },
    }


def mint_update(**kwargs: Any) -> dict[str, Any]:
    """A successful Pump.fun create: keys 0..7 are wallets, key 8 is the program."""
    keys = [make_key(i) for i in range(1, 9)] + [PUMPFUN_PROGRAM]
    return geyser_update(
        keys,
        [{"program": 8, "accounts": list(range(8)), "data": pumpfun_create_data()}],
        **kwargs,
    )


def transfer_update(lamports: int, **kwargs: Any) -> dict[str, Any]:
    keys = [make_key(40), make_key(41), SYSTEM_PROGRAM]
    return geyser_update(
        keys,
        [{"program": 2, "accounts": [0, 1], "data": transfer_data(lamports)}],
        filters=["transfers"],
        **kwargs,
    )


@pytest.fixture
def frames():
    """Namespace of frame builders for tests."""

    class _Frames:
        key = staticmethod(make_key)
        signature = staticmethod(make_signature)
        update = staticmethod(geyser_update)
        mint = staticmethod(mint_update)
        transfer = staticmethod(transfer_update)
        create_data = staticmethod(pumpfun_create_data)
        transfer_data = staticmethod(transfer_data)

    return _Frames


# ── Fake websocket ────────────────────────────────────────────────────────────


class FakeConnection:
    """
    Stand-in for a websockets client connection.

    Yields `frames` (dicts are JSON-encoded), then either raises `fail_with`
    or, with hold_open, waits until close() is called.
    """

    def __init__(self, frames: list[Any] = (), fail_with: BaseException | None = None, hold_open: bool = False) -> None:
        self.frames = list(frames)
        self.fail_with = fail_with
        self.hold_open = hold_open
        self.sent: list[Any] = []
        self.closed = False
        self._closed_event = asyncio.Event()

    async def __aenter__(self) -> "FakeConnection":
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.closed = True

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            if self._closed_event.is_set():
                return
            yield frame if isinstance(frame, (str, bytes)) else json.dumps(frame)
        if self.fail_with is not None:
            raise self.fail_with
        if self.hold_open:
            await self._closed_event.wait()


class FakeConnector:
    """Connect factory returning scripted connections; OSError once the script runs out."""

    def __init__(self, connections: list[Any] = ()) -> None:
        self.connections = list(connections)
        self.calls: list[tuple[str, dict[str, str]]] = []

    def __call__(self, url: str, headers: dict[str, str]) -> FakeConnection:
        self.calls.append((url, headers))
        if not self.connections:
            raise OSError("connection refused")
        item = self.connections.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def fake_ws():
    """Access to FakeConnection / FakeConnector."""

    class _Fakes:
        Connection = FakeConnection
        Connector = FakeConnector

    return _Fakes


@pytest.fixture
def log_messages():
    """Formatted loguru lines ("LEVEL message") emitted during the test."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.rstrip("\n")), level="DEBUG", format="{level} {message}")
    yield messages
    logger.remove(handler_id)
