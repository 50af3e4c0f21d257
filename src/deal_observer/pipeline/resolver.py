"""Payload CID resolver - advances each deal's retrievability state."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from deal_observer.interfaces.chain import PayloadSampleFetcher, PeerIdResolver
from deal_observer.interfaces.store import DealStore
from deal_observer.models.records import ActiveDeal, PayloadRetrievabilityState

log = logging.getLogger(__name__)

RETRY_WINDOW = timedelta(days=3)


def next_state(deal: ActiveDeal, sample: str | None) -> PayloadRetrievabilityState:
    """State after an attempt: a deal gets at most one retry before it is terminal."""
    if sample:
        return PayloadRetrievabilityState.RESOLVED
    if deal.last_payload_retrieval_attempt is None:
        return PayloadRetrievabilityState.UNRESOLVED
    return PayloadRetrievabilityState.TERMINALLY_UNRETRIEVABLE


class PayloadResolver:
    """Resolves payload CIDs for deals that have none yet.

    For every selected deal: look up the miner's peer ID, ask the piece
    indexer for a sample of the piece, then persist the new state together
    with the attempt timestamp. A deal whose lookup fails is left untouched
    so it is picked up again by a later pass.
    """

    def __init__(
        self,
        get_peer_identity: PeerIdResolver,
        fetch_payload_sample: PayloadSampleFetcher,
        store: DealStore,
        retry_window: timedelta = RETRY_WINDOW,
    ) -> None:
        self._get_peer_identity = get_peer_identity
        self._fetch_payload_sample = fetch_payload_sample
        self._store = store
        self._retry_window = retry_window

    async def run_pass(self, max_deals: int, now: datetime | None = None) -> int:
        """Attempt resolution for up to ``max_deals`` deals; returns how many resolved."""
        now = now or datetime.now(timezone.utc)
        deals = await self._store.deals_needing_resolution(now - self._retry_window, max_deals)
        resolved = 0
        failed = 0
        for deal in deals:
            try:
                state = await self.resolve_deal(deal, now)
            except Exception as exc:
                failed += 1
                log.error(
                    "Payload resolution failed for deal %s (miner f0%d, piece %s): %s",
                    deal.id, deal.miner_id, deal.piece_cid, exc,
                )
                continue
            if state is PayloadRetrievabilityState.RESOLVED:
                resolved += 1

        if deals:
            log.info(
                "Payload resolution pass: %d selected, %d resolved, %d failed",
                len(deals), resolved, failed,
            )
        return resolved

    async def resolve_deal(self, deal: ActiveDeal, now: datetime) -> PayloadRetrievabilityState:
        if deal.id is None:
            raise ValueError(f"Deal for piece {deal.piece_cid} has not been stored")
        identity = await self._get_peer_identity(deal.miner_id)
        log.debug("Using PeerID from %s for miner f0%d", identity.source, deal.miner_id)
        sample = await self._fetch_payload_sample(identity.peer_id, deal.piece_cid)
        state = next_state(deal, sample)
        await self._store.update_resolution(deal.id, sample or None, state, now)
        return state
