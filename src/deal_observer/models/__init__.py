"""Data models for the deal observer."""

from deal_observer.models.events import BlockEvent, ChainHead, ClaimEvent
from deal_observer.models.records import (
    ActiveDeal,
    DealStats,
    EligibleDeal,
    ObservationReport,
    PayloadRetrievabilityState,
    PeerIdentity,
    PeerIdSource,
    SubmissionReport,
    SubmitResult,
)
from deal_observer.models.config import ObserverConfig, RetryConfig

__all__ = [
    "BlockEvent", "ChainHead", "ClaimEvent",
    "ActiveDeal", "DealStats", "EligibleDeal", "ObservationReport",
    "PayloadRetrievabilityState", "PeerIdentity", "PeerIdSource",
    "SubmissionReport", "SubmitResult",
    "ObserverConfig", "RetryConfig",
]
