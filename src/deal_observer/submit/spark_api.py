"""spark-api submitter - POSTs eligible deal batches to /eligible-deals-batch."""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

from deal_observer.errors import SubmissionError
from deal_observer.models.records import EligibleDeal, SubmitResult

log = logging.getLogger(__name__)


def deal_to_payload(deal: EligibleDeal) -> dict:
    return {
        "minerId": f"f0{deal.miner_id}",
        "clientId": f"f0{deal.client_id}",
        "pieceCid": deal.piece_cid,
        "pieceSize": str(deal.piece_size),
        "payloadCid": deal.payload_cid,
        "expiresAt": deal.expires_at.isoformat(),
    }


class SparkApiSubmitter:
    """Hands a batch of eligible deals to spark-api.

    Not retried here: an unaccepted batch stays unsubmitted and is offered
    again on the next submission pass.
    """

    def __init__(self, api_url: str, api_token: str = "", timeout: float = 60.0) -> None:
        self._url = f"{api_url.rstrip('/')}/eligible-deals-batch"
        self._timeout = timeout
        self._headers = {"content-type": "application/json"}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"

    async def __call__(self, deals: Sequence[EligibleDeal]) -> SubmitResult:
        body = {"deals": [deal_to_payload(d) for d in deals]}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=body, headers=self._headers)
        except httpx.HTTPError as exc:
            raise SubmissionError(f"spark-api request failed: {exc}") from exc

        if resp.status_code >= 300:
            raise SubmissionError(
                f"Failed to submit deals ({resp.status_code}): {resp.text[:200]}"
            )
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        result = SubmitResult(
            ingested=int(data.get("ingested", len(deals)) or 0),
            skipped=int(data.get("skipped", 0) or 0),
        )
        log.debug("spark-api accepted %d deals: %s", len(deals), result)
        return result
