"""Chain observer - walks finalized heights and records claim events as deals."""

from __future__ import annotations

import logging

from deal_observer.errors import DomainError
from deal_observer.interfaces.chain import ChainSource
from deal_observer.interfaces.store import DealStore
from deal_observer.models.events import BlockEvent
from deal_observer.models.records import ActiveDeal, ObservationReport

log = logging.getLogger(__name__)

# Confirmations after which a tipset is treated as final.
FINALITY_EPOCHS = 940

CLAIM_EVENT_TYPE = "claim"


def block_event_to_active_deal(event: BlockEvent) -> ActiveDeal:
    claim = event.event
    return ActiveDeal(
        activated_at_epoch=event.height,
        miner_id=claim.provider,
        client_id=claim.client,
        piece_cid=claim.piece_cid,
        piece_size=claim.piece_size,
        term_start_epoch=claim.term_start,
        term_min=claim.term_min,
        term_max=claim.term_max,
        sector_id=claim.sector,
        reverted=event.reverted,
    )


class ChainObserver:
    """Converts finalized chain heights into stored ActiveDeal rows.

    Each pass:
    1. Reads the chain head and derives the finalized height
    2. Resumes from the highest stored activation epoch (or, on an empty
       store, from the current finalized height)
    3. Fetches and stores the claim events of every height in
       (watermark, finalized], one height at a time, ascending

    The watermark is derived from stored rows, so a height that was not
    written is fetched again on the next pass.
    """

    def __init__(
        self,
        chain: ChainSource,
        store: DealStore,
        finality_epochs: int = FINALITY_EPOCHS,
    ) -> None:
        self._chain = chain
        self._store = store
        self._finality_epochs = finality_epochs

    async def run_pass(self) -> ObservationReport:
        # Failures here abort the pass: there is nothing to iterate over.
        head = await self._chain.get_chain_head()
        finalized = max(head.height - self._finality_epochs, 0)
        watermark = await self._store.highest_activated_epoch()
        if watermark is None:
            watermark = finalized - 1
            log.info("Empty store, starting at finalized height %d", finalized)

        report = ObservationReport(
            chain_head=head.height, finalized=finalized, start=watermark + 1,
        )
        for height in range(watermark + 1, finalized + 1):
            try:
                stored = await self.observe_height(height)
            except DomainError as exc:
                log.error("Skipping height %d: %s", height, exc)
                report.heights_processed += 1
                continue
            except Exception as exc:
                log.error("Observation stopped at height %d: %s", height, exc)
                report.failed_height = height
                break
            if stored is None:
                log.error("Observation stopped at height %d: deals were not stored", height)
                report.failed_height = height
                break
            report.heights_processed += 1
            report.deals_observed += stored

        if report.heights_processed:
            log.info(
                "Observed heights %d-%d: %d deals (head %d, finalized %d)",
                report.start, report.start + report.heights_processed - 1,
                report.deals_observed, head.height, finalized,
            )
        return report

    async def observe_height(self, height: int) -> int | None:
        """Fetch and store one height's claims. Returns the count, or None if the write failed."""
        events = await self._chain.get_actor_events(height, height, CLAIM_EVENT_TYPE)
        deals = [block_event_to_active_deal(event) for event in events]
        if not await self._store.upsert_active_deals(deals):
            return None
        if deals:
            log.debug("Stored %d deals at height %d", len(deals), height)
        return len(deals)
