"""Lotus JSON-RPC transport over httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from deal_observer.errors import RpcCallError, RpcSchemaError, RpcUnavailable
from deal_observer.models.config import RetryConfig
from deal_observer.retry import is_transient_http_error, with_retries

log = logging.getLogger(__name__)


class LotusRpcClient:
    """Sends JSON-RPC 2.0 requests to a Lotus-compatible endpoint.

    The POST itself is retried on transient failures; the response envelope
    is then validated once. A non-2xx status, after retries where it is
    retryable, raises ``RpcUnavailable``; a body that is not a JSON-RPC
    envelope raises ``RpcSchemaError``.
    """

    def __init__(
        self,
        rpc_url: str,
        token: str = "",
        timeout: float = 30.0,
        retry: RetryConfig | None = None,
    ) -> None:
        self._url = rpc_url
        self._timeout = timeout
        self._retry = retry or RetryConfig()
        self._headers = {"content-type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    @property
    def url(self) -> str:
        return self._url

    async def request(self, method: str, params: list) -> Any:
        """Call ``method`` and return the envelope's ``result``."""
        body = {"method": method, "params": params, "id": 1, "jsonrpc": "2.0"}

        async def _post() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=body, headers=self._headers)
                resp.raise_for_status()
                return resp

        outcome = await with_retries(
            self._retry.attempts,
            is_transient_http_error,
            _post,
            backoff=self._retry.backoff,
            max_backoff=self._retry.max_backoff,
        )
        if not outcome.ok:
            exc = outcome.error
            if isinstance(exc, httpx.HTTPStatusError):
                detail = f"HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            else:
                detail = f"{type(exc).__name__}: {exc}"
            if outcome.transient:
                detail = f"{detail} (after {outcome.attempts} attempts)"
            log.error("RPC %s to %s failed: %s", method, self._url, detail)
            raise RpcUnavailable(method, detail) from exc

        resp = outcome.unwrap()
        try:
            envelope = resp.json()
        except ValueError as exc:
            raise RpcSchemaError(
                f"RPC {method} returned a non-JSON body: {resp.text[:200]!r}"
            ) from exc
        return _unwrap_envelope(method, envelope)


def _unwrap_envelope(method: str, envelope: Any) -> Any:
    if not isinstance(envelope, dict) or envelope.get("jsonrpc") != "2.0":
        raise RpcSchemaError(f"Failed to parse RPC response for {method}: {envelope!r}")
    error = envelope.get("error")
    if error is not None:
        if isinstance(error, dict):
            raise RpcCallError(method, error.get("code"), str(error.get("message", "")))
        raise RpcCallError(method, None, str(error))
    if "result" not in envelope:
        raise RpcSchemaError(f"RPC response for {method} has no result: {envelope!r}")
    return envelope["result"]
