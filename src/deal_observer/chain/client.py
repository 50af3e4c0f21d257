"""Chain client: chain head, actor events, peer identity, payload samples."""

from __future__ import annotations

import base64
import logging
from typing import Any, Awaitable, Callable, Protocol

import cbor2

from deal_observer.chain.decoder import CODEC_DAG_CBOR, decode_block_event
from deal_observer.errors import RpcSchemaError
from deal_observer.models.events import BlockEvent, ChainHead
from deal_observer.models.records import PeerIdentity

log = logging.getLogger(__name__)


class JsonRpc(Protocol):
    async def request(self, method: str, params: list) -> Any: ...


class PayloadSampler(Protocol):
    async def fetch_payload_sample(self, peer_id: str, piece_cid: str) -> str | None: ...


def actor_events_filter(from_height: int, to_height: int, event_type: str) -> dict:
    """Filter for Filecoin.GetActorEventsRaw matching one built-in event type.

    The ``$type`` value must be the DAG-CBOR encoding of the type string in
    padded base64. Codec 81 only matches built-in actor events (FEVM events
    are all RAW).
    """
    encoded = base64.b64encode(cbor2.dumps(event_type)).decode("ascii")
    return {
        "fromHeight": from_height,
        "toHeight": to_height,
        "fields": {
            "$type": [{"Codec": CODEC_DAG_CBOR, "Value": encoded}],
        },
    }


class ChainClient:
    """Thin typed layer over the Lotus JSON-RPC API and the piece indexer."""

    def __init__(
        self,
        rpc: JsonRpc,
        peer_id_lookup: Callable[[int], Awaitable[PeerIdentity]],
        piece_indexer: PayloadSampler,
    ) -> None:
        self._rpc = rpc
        self._peer_id_lookup = peer_id_lookup
        self._piece_indexer = piece_indexer

    async def get_chain_head(self) -> ChainHead:
        result = await self._rpc.request("Filecoin.ChainHead", [])
        if not isinstance(result, dict):
            raise RpcSchemaError(f"Failed to parse chain head: {result!r}")
        height = result.get("Height")
        if not isinstance(height, int) or isinstance(height, bool) or height < 0:
            raise RpcSchemaError(f"Failed to parse chain head height: {height!r}")
        cids = result.get("Cids") or []
        if not isinstance(cids, list):
            raise RpcSchemaError(f"Failed to parse chain head tipset key: {cids!r}")
        return ChainHead(height=height, tipset_key=cids)

    async def get_actor_events(
        self, from_height: int, to_height: int, event_type: str = "claim",
    ) -> list[BlockEvent]:
        flt = actor_events_filter(from_height, to_height, event_type)
        raw_events = await self._rpc.request("Filecoin.GetActorEventsRaw", [flt])
        if not raw_events:
            log.debug(
                "No actor events found in the height range %d - %d", from_height, to_height,
            )
            return []
        if not isinstance(raw_events, list):
            raise RpcSchemaError(f"GetActorEventsRaw must return a list: {raw_events!r}")
        return [decode_block_event(raw) for raw in raw_events]

    async def get_peer_identity(self, miner_id: int) -> PeerIdentity:
        return await self._peer_id_lookup(miner_id)

    async def fetch_payload_sample(self, peer_id: str, piece_cid: str) -> str | None:
        return await self._piece_indexer.fetch_payload_sample(peer_id, piece_cid)
