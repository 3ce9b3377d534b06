"""
Feed layer for chainwatch.

Provides a factory `get_feed()` returning the stream source behind each
watcher, and `feed_url()` for the endpoint it connects to. All feeds
implement the Feed protocol in feeds/base.py.

Usage:
    from chainwatch.feeds import feed_url, get_feed
    feed = get_feed("mints", config)
    manager = SubscriptionManager("mints", feed_url("mints", config), feed, handler)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from chainwatch.feeds.base import Feed, Frame, FrameKind

if TYPE_CHECKING:
    from chainwatch.config import ChainwatchConfig

SUPPORTED_FEEDS = {"mints", "transfers", "migrations", "whales", "hyperevm"}

__all__ = ["Feed", "Frame", "FrameKind", "SUPPORTED_FEEDS", "feed_url", "get_feed"]


def get_feed(name: str, config: ChainwatchConfig) -> Feed:
    """
    Factory: return the configured feed for a watcher.

    Raises:
        ValueError: Unknown feed name
    """
    if name not in SUPPORTED_FEEDS:
        raise ValueError(f"Unsupported feed: {name!r}. Supported: {sorted(SUPPORTED_FEEDS)}")

    provider = config.provider

    if name in ("mints", "transfers"):
        from chainwatch.feeds.geyser import GeyserFeed

        accounts = (
            config.filters.mint_programs if name == "mints" else config.filters.transfer_programs
        )
        return GeyserFeed(
            filter_name=name,
            account_include=accounts,
            token=provider.geyser_token,
            commitment=provider.commitment,
        )

    if name == "migrations":
        from chainwatch.feeds.logs import LogsFeed

        return LogsFeed(mentions=config.filters.migration_accounts, commitment=provider.commitment)

    if name == "whales":
        from chainwatch.feeds.hyperliquid import HyperliquidFeed

        return HyperliquidFeed(symbols=config.filters.tracked_symbols)

    if name == "hyperevm":
        from chainwatch.feeds.hyperevm import HyperEVMFeed

        return HyperEVMFeed()

    raise ValueError(f"Unreachable: {name}")  # pragma: no cover


def feed_url(name: str, config: ChainwatchConfig) -> str:
    """Return the websocket endpoint for a feed name."""
    provider = config.provider
    urls = {
        "mints": provider.geyser_url,
        "transfers": provider.geyser_url,
        "migrations": provider.solana_ws_url,
        "whales": provider.hyperliquid_ws_url,
        "hyperevm": provider.hyperevm_ws_url,
    }
    if name not in urls:
        raise ValueError(f"Unsupported feed: {name!r}. Supported: {sorted(SUPPORTED_FEEDS)}")
    return urls[name]
