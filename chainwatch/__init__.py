"""chainwatch — streaming on-chain event watchers."""

__version__ = "0.1.0"
