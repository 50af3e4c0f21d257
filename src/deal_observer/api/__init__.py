"""Read-only views over the deal store."""

from deal_observer.api.stats import StatsAggregator

__all__ = ["StatsAggregator"]
