"""Persisted deal rows and pipeline result types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class PayloadRetrievabilityState(str, Enum):
    """Progress of payload CID resolution for a single deal."""

    NOT_QUERIED = "PAYLOAD_CID_NOT_QUERIED_YET"  # assigned at insert
    UNRESOLVED = "PAYLOAD_CID_UNRESOLVED"  # one failed attempt
    RESOLVED = "PAYLOAD_CID_RESOLVED"  # terminal
    TERMINALLY_UNRETRIEVABLE = "PAYLOAD_CID_TERMINALLY_UNRETRIEVABLE"  # terminal

    @property
    def is_terminal(self) -> bool:
        return self in (
            PayloadRetrievabilityState.RESOLVED,
            PayloadRetrievabilityState.TERMINALLY_UNRETRIEVABLE,
        )


class PeerIdSource(str, Enum):
    """Where a miner's index provider peer ID was found."""

    SMART_CONTRACT = "smartContract"
    MINER_INFO = "minerInfo"


@dataclass(frozen=True)
class PeerIdentity:
    """Index provider peer ID of a miner, tagged with its provenance."""

    peer_id: str
    source: PeerIdSource | str


@dataclass
class ActiveDeal:
    """A row of the active_deals table.

    Chain facts never change once written. The natural key is the tuple
    returned by ``natural_key()``; ``id`` is assigned by the store.
    """

    activated_at_epoch: int
    miner_id: int
    client_id: int
    piece_cid: str
    piece_size: int
    term_start_epoch: int
    term_min: int
    term_max: int
    sector_id: int
    id: int | None = None
    reverted: bool = False
    payload_cid: str | None = None
    payload_retrievability_state: PayloadRetrievabilityState = (
        PayloadRetrievabilityState.NOT_QUERIED
    )
    last_payload_retrieval_attempt: datetime | None = None
    submitted_at: datetime | None = None

    def natural_key(self) -> tuple:
        return (
            self.activated_at_epoch,
            self.miner_id,
            self.client_id,
            self.piece_cid,
            self.piece_size,
            self.term_start_epoch,
            self.term_min,
            self.term_max,
            self.sector_id,
        )


@dataclass(frozen=True)
class EligibleDeal:
    """A resolved, unsubmitted deal as handed to the collection API."""

    id: int
    miner_id: int
    client_id: int
    piece_cid: str
    piece_size: int
    payload_cid: str
    expires_at: datetime


@dataclass
class ObservationReport:
    """Outcome of one chain observation pass."""

    chain_head: int
    finalized: int
    start: int  # first height requested
    heights_processed: int = 0
    deals_observed: int = 0
    failed_height: int | None = None


@dataclass
class SubmissionReport:
    """Totals for one submission pass."""

    submitted: int = 0
    ingested: int = 0
    skipped: int = 0


@dataclass
class SubmitResult:
    """Downstream response for one submitted batch."""

    ingested: int = 0
    skipped: int = 0


@dataclass
class DealStats:
    """Aggregate counts over active_deals."""

    total: int = 0
    not_queried: int = 0
    unresolved: int = 0
    resolved: int = 0
    terminally_unretrievable: int = 0
    missing_payload_cid: int = 0
    reverted: int = 0
    submitted: int = 0
    highest_activated_epoch: int | None = None
