"""Piece indexer client - samples payload CIDs for a (peer, piece) pair."""

from __future__ import annotations

import logging

import httpx

from deal_observer.errors import PieceIndexerError
from deal_observer.models.config import RetryConfig
from deal_observer.retry import is_transient_http_error, with_retries

log = logging.getLogger(__name__)


class PieceIndexerClient:
    """Queries ``GET {base}/sample/{peerId}/{pieceCid}``.

    The indexer answers ``{"samples": [cid, ...]}``; the first sample is the
    payload CID. No sample (or a 404) is a normal outcome and yields None.
    """

    def __init__(
        self,
        base_url: str = "https://pix.filspark.com",
        timeout: float = 30.0,
        retry: RetryConfig | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._retry = retry or RetryConfig()

    def _url(self, peer_id: str, piece_cid: str) -> str:
        return f"{self._base_url}/sample/{peer_id}/{piece_cid}"

    async def fetch_payload_sample(self, peer_id: str, piece_cid: str) -> str | None:
        url = self._url(peer_id, piece_cid)

        async def _get() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers={"accept": "application/json"})
                if resp.status_code != 404:
                    resp.raise_for_status()
                return resp

        outcome = await with_retries(
            self._retry.attempts,
            is_transient_http_error,
            _get,
            backoff=self._retry.backoff,
            max_backoff=self._retry.max_backoff,
        )
        if not outcome.ok:
            log.error("Piece indexer request %s failed: %s", url, outcome.error)
            raise PieceIndexerError(
                f"Piece indexer request failed after {outcome.attempts} attempt(s): {outcome.error}"
            ) from outcome.error

        resp = outcome.unwrap()
        if resp.status_code == 404:
            return None
        try:
            body = resp.json()
        except ValueError as exc:
            raise PieceIndexerError(
                f"Failed to parse response from piece indexer: {resp.text[:200]!r}"
            ) from exc
        return _first_sample(body)


def _first_sample(body: object) -> str | None:
    if not isinstance(body, dict):
        raise PieceIndexerError(f"Unexpected piece indexer response: {body!r}")
    samples = body.get("samples")
    if samples is None:
        return None
    if not isinstance(samples, list) or not all(isinstance(s, str) for s in samples):
        raise PieceIndexerError(f"Unexpected piece indexer samples: {samples!r}")
    return samples[0] if samples else None
