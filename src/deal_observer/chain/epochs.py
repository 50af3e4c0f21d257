"""Conversion between Filecoin epochs and wall-clock time."""

from __future__ import annotations

from datetime import datetime, timezone

from deal_observer.models.config import EPOCH_DURATION_SECONDS, FILECOIN_GENESIS_TIMESTAMP


def epoch_to_datetime(
    epoch: int,
    genesis: int = FILECOIN_GENESIS_TIMESTAMP,
    duration: int = EPOCH_DURATION_SECONDS,
) -> datetime:
    return datetime.fromtimestamp(genesis + epoch * duration, tz=timezone.utc)


def datetime_to_epoch(
    when: datetime,
    genesis: int = FILECOIN_GENESIS_TIMESTAMP,
    duration: int = EPOCH_DURATION_SECONDS,
) -> int:
    """Epoch in progress at ``when`` (floor)."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return int((when.timestamp() - genesis) // duration)
