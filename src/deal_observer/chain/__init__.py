"""Filecoin chain access: JSON-RPC transport, event decoding, peer IDs."""

from deal_observer.chain.client import ChainClient, actor_events_filter
from deal_observer.chain.decoder import decode_block_event
from deal_observer.chain.rpc import LotusRpcClient

__all__ = ["ChainClient", "actor_events_filter", "decode_block_event", "LotusRpcClient"]
