"""DealSubmitter protocol - hands eligible deals to the collection API."""

from __future__ import annotations

from typing import Protocol, Sequence

from deal_observer.models.records import EligibleDeal, SubmitResult


class DealSubmitter(Protocol):
    """Submits one batch; raising means the batch was not accepted."""

    async def __call__(self, deals: Sequence[EligibleDeal]) -> SubmitResult:
        ...
