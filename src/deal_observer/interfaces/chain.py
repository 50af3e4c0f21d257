"""Chain-facing protocols used by the observation and resolution passes."""

from __future__ import annotations

from typing import Protocol

from deal_observer.models.events import BlockEvent, ChainHead
from deal_observer.models.records import PeerIdentity


class ChainSource(Protocol):
    """What the chain observer needs from the chain."""

    async def get_chain_head(self) -> ChainHead:
        ...

    async def get_actor_events(
        self, from_height: int, to_height: int, event_type: str = "claim",
    ) -> list[BlockEvent]:
        """Decoded events in the inclusive height range; [] when there are none."""
        ...


class PeerIdResolver(Protocol):
    """Maps a miner actor ID to its index provider peer ID."""

    async def __call__(self, miner_id: int) -> PeerIdentity:
        ...


class PayloadSampleFetcher(Protocol):
    """Returns a sample payload CID for a piece stored by a peer, or None."""

    async def __call__(self, peer_id: str, piece_cid: str) -> str | None:
        ...
