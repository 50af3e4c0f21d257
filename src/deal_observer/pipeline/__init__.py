"""The three pipeline passes: observe, resolve, submit."""

from deal_observer.pipeline.observer import ChainObserver, block_event_to_active_deal
from deal_observer.pipeline.resolver import PayloadResolver
from deal_observer.pipeline.submission import SubmissionScheduler

__all__ = ["ChainObserver", "block_event_to_active_deal", "PayloadResolver", "SubmissionScheduler"]
