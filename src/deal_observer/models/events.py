"""Chain values decoded from Lotus JSON-RPC responses."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChainHead:
    """Current tipset as reported by Filecoin.ChainHead. Never persisted."""

    height: int
    tipset_key: list = field(default_factory=list)


@dataclass(frozen=True)
class ClaimEvent:
    """Built-in actor `claim` event: a verified deal became active in a sector."""

    claim_id: int
    provider: int  # miner actor ID
    client: int  # client actor ID
    piece_cid: str
    piece_size: int
    term_start: int
    term_min: int
    term_max: int
    sector: int


@dataclass(frozen=True)
class BlockEvent:
    """A decoded actor event together with where it was emitted."""

    height: int
    emitter: str
    event: ClaimEvent
    reverted: bool = False
