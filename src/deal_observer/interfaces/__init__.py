"""Protocol interfaces for all deal_observer components."""

from deal_observer.interfaces.chain import ChainSource, PayloadSampleFetcher, PeerIdResolver
from deal_observer.interfaces.store import DealStore
from deal_observer.interfaces.submitter import DealSubmitter

__all__ = [
    "ChainSource", "PayloadSampleFetcher", "PeerIdResolver",
    "DealStore",
    "DealSubmitter",
]
