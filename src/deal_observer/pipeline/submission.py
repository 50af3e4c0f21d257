"""Submission scheduler - delivers eligible deals to the collection API in batches."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from deal_observer.interfaces.store import DealStore
from deal_observer.interfaces.submitter import DealSubmitter
from deal_observer.models.records import SubmissionReport

log = logging.getLogger(__name__)


class SubmissionScheduler:
    """Drains the backlog of unsubmitted eligible deals.

    Delivery is at-least-once: a batch is marked submitted only after the
    submitter accepted it. A failed batch ends the pass and stays eligible.
    """

    def __init__(self, store: DealStore, submit_deals: DealSubmitter) -> None:
        self._store = store
        self._submit_deals = submit_deals

    async def run_pass(self, batch_size: int, now: datetime | None = None) -> SubmissionReport:
        now = now or datetime.now(timezone.utc)
        report = SubmissionReport()
        while True:
            batch = await self._store.unsubmitted_eligible_deals(now, batch_size)
            if not batch:
                break
            try:
                result = await self._submit_deals(batch)
            except Exception as exc:
                log.error("Failed to submit batch of %d deals: %s", len(batch), exc)
                break
            await self._store.mark_submitted([deal.id for deal in batch], now)
            report.submitted += len(batch)
            report.ingested += result.ingested
            report.skipped += result.skipped
            log.info(
                "Submitted %d deals (ingested=%d, skipped=%d)",
                len(batch), result.ingested, result.skipped,
            )
            if len(batch) < batch_size:
                break
        return report
