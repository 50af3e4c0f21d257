"""DealStore protocol - owns the active_deals relation."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol, Sequence

from deal_observer.models.records import (
    ActiveDeal,
    EligibleDeal,
    PayloadRetrievabilityState,
)


class DealStore(Protocol):
    """Persists observed deals and their enrichment/delivery state."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    # ── Ingestion ──────────────────────────────────────────

    async def upsert_active_deals(
        self, deals: Sequence[ActiveDeal], *, include_enrichment: bool = False,
    ) -> bool:
        ...

    async def highest_activated_epoch(self) -> int | None:
        ...

    # ── Payload resolution ─────────────────────────────────

    async def deals_needing_resolution(
        self, retry_cutoff: datetime, limit: int,
    ) -> list[ActiveDeal]:
        ...

    async def update_resolution(
        self,
        deal_id: int,
        payload_cid: str | None,
        new_state: PayloadRetrievabilityState,
        attempted_at: datetime,
    ) -> None:
        ...

    # ── Aggregates ─────────────────────────────────────────

    async def count_by_state(self, state: PayloadRetrievabilityState) -> int:
        ...

    async def count_unresolved_payload(self) -> int:
        ...

    # ── Submission ─────────────────────────────────────────

    async def unsubmitted_eligible_deals(
        self, now: datetime, batch_size: int,
    ) -> list[EligibleDeal]:
        ...

    async def mark_submitted(self, deal_ids: Iterable[int], now: datetime | None = None) -> None:
        ...
