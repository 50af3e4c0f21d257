"""Stats aggregator - observability counts over the active_deals table."""

from __future__ import annotations

import logging

from deal_observer.models.records import DealStats, PayloadRetrievabilityState
from deal_observer.storage.sqlite import SQLiteDealStore

log = logging.getLogger(__name__)


class StatsAggregator:
    """Builds DealStats snapshots for the CLI and the periodic log line."""

    def __init__(self, store: SQLiteDealStore) -> None:
        self._store = store

    async def snapshot(self) -> DealStats:
        s = self._store
        return DealStats(
            total=await s.count_all(),
            not_queried=await s.count_by_state(PayloadRetrievabilityState.NOT_QUERIED),
            unresolved=await s.count_by_state(PayloadRetrievabilityState.UNRESOLVED),
            resolved=await s.count_by_state(PayloadRetrievabilityState.RESOLVED),
            terminally_unretrievable=await s.count_by_state(
                PayloadRetrievabilityState.TERMINALLY_UNRETRIEVABLE
            ),
            missing_payload_cid=await s.count_unresolved_payload(),
            reverted=await s.count_reverted(),
            submitted=await s.count_submitted(),
            highest_activated_epoch=await s.highest_activated_epoch(),
        )

    async def log_snapshot(self) -> DealStats:
        stats = await self.snapshot()
        log.info(
            "Deals: %d total, %d resolved, %d unresolved, %d not queried,"
            " %d terminally unretrievable, %d reverted, %d submitted",
            stats.total, stats.resolved, stats.unresolved, stats.not_queried,
            stats.terminally_unretrievable, stats.reverted, stats.submitted,
        )
        return stats
