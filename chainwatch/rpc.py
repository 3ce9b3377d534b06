"""
Solana JSON-RPC client — full transaction lookups.

Used by the migration watcher: logsSubscribe only reports signatures and log
lines, so the transaction itself is fetched here once a migration phrase
has been seen.

Design decisions:
- encoding=json so keys and instruction data come back as base58 strings.
- maxSupportedTransactionVersion=0, otherwise v0 transactions are rejected.
- A null result (not yet visible at this commitment) returns None, not an error.
"""

from __future__ import annotations

from typing import Any

import httpx

from chainwatch.exceptions import FetchError, FetchTimeoutError


class SolanaRPCClient:
    """Async Solana JSON-RPC client over HTTP."""

    def __init__(self, http_url: str, timeout: float = 15.0, commitment: str = "confirmed") -> None:
        self.http_url = http_url
        self.commitment = commitment
        self._client = httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        """
        Fetch one transaction by signature.

        Returns:
            The getTransaction result object, or None if the node does not
            have it yet.

        Raises:
            FetchTimeoutError: Request timed out
            FetchError: Connection failure, HTTP error, or JSON-RPC error
        """
        params = [
            signature,
            {
                "encoding": "json",
                "commitment": self.commitment,
                "maxSupportedTransactionVersion": 0,
            },
        ]
        result = await self._call("getTransaction", params)
        return result if isinstance(result, dict) else None

    async def close(self) -> None:
        await self._client.aclose()

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            resp = await self._client.post(self.http_url, json=payload)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(f"Solana RPC timeout on {method}: {e}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Cannot reach Solana RPC: {e}") from e

        if resp.status_code != 200:
            raise FetchError(
                f"Solana RPC error: HTTP {resp.status_code}",
                details={"method": method, "status": resp.status_code},
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise FetchError(f"Solana RPC returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise FetchError(
                f"Solana RPC {method} returned a non-object body",
                details={"method": method, "body_type": type(data).__name__},
            )

        if data.get("error"):
            raise FetchError(
                f"Solana RPC {method} failed: {data['error']}",
                details={"method": method, "error": data["error"]},
            )
        return data.get("result")
