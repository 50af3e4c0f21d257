"""Index provider peer ID lookup for miners.

Two sources are tried in order: the on-chain MinerPeerIDMapping registry
(an FEVM contract read through ``eth_call``) and, when the miner has not
published a peer ID there, the ``PeerId`` field of Filecoin.StateMinerInfo.
``PeerIdentityCache`` memoizes successful lookups for a bounded time.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Protocol, Sequence

from Crypto.Hash import keccak

from deal_observer.errors import PeerIdentityUnavailable, RpcSchemaError
from deal_observer.models.config import MINER_TO_PEER_ID_CONTRACT
from deal_observer.models.records import PeerIdentity, PeerIdSource

log = logging.getLogger(__name__)

PeerIdLookup = Callable[[int], Awaitable[PeerIdentity]]


class JsonRpc(Protocol):
    async def request(self, method: str, params: list) -> object: ...


def keccak_selector(signature: str) -> str:
    """First four bytes of keccak-256 of a Solidity function signature, hex."""
    h = keccak.new(digest_bits=256)
    h.update(signature.encode("utf-8"))
    return h.hexdigest()[:8]


GET_PEER_DATA_SELECTOR = keccak_selector("getPeerData(uint64)")


def _abi_encode_uint(value: int) -> str:
    return format(value, "x").rjust(64, "0")


def _read_word(data: bytes, offset: int) -> int:
    if offset + 32 > len(data):
        raise ValueError("word out of bounds")
    return int.from_bytes(data[offset : offset + 32], "big")


def _read_dynamic(data: bytes, offset: int) -> bytes:
    length = _read_word(data, offset)
    start = offset + 32
    if start + length > len(data):
        raise ValueError("bytes out of bounds")
    return data[start : start + length]


def decode_peer_data(result_hex: str) -> tuple[str, bytes]:
    """Decode the ``PeerData {string peerID; bytes signature}`` return value."""
    if not isinstance(result_hex, str) or not result_hex.startswith("0x"):
        raise ValueError(f"unexpected eth_call output: {result_hex!r}")
    data = bytes.fromhex(result_hex[2:])
    if not data:
        return "", b""
    # Single dynamic tuple: head word points at the tuple, whose members are
    # offsets relative to the tuple start.
    base = _read_word(data, 0)
    peer_id = _read_dynamic(data, base + _read_word(data, base))
    signature = _read_dynamic(data, base + _read_word(data, base + 32))
    return peer_id.decode("utf-8"), signature


class SmartContractPeerIdStrategy:
    """Reads the miner's published peer ID from the registry contract."""

    source = PeerIdSource.SMART_CONTRACT

    def __init__(self, rpc: JsonRpc, contract: str = MINER_TO_PEER_ID_CONTRACT) -> None:
        self._rpc = rpc
        self._contract = contract

    async def __call__(self, miner_id: int) -> PeerIdentity | None:
        call = {
            "to": self._contract,
            "data": "0x" + GET_PEER_DATA_SELECTOR + _abi_encode_uint(miner_id),
        }
        result = await self._rpc.request("eth_call", [call, "latest"])
        try:
            peer_id, _signature = decode_peer_data(result)
        except (ValueError, UnicodeDecodeError) as exc:
            raise RpcSchemaError(f"Cannot decode getPeerData result: {result!r}") from exc
        if not peer_id:
            return None
        return PeerIdentity(peer_id=peer_id, source=self.source)


class MinerInfoPeerIdStrategy:
    """Falls back to the PeerId the miner advertises in its actor state."""

    source = PeerIdSource.MINER_INFO

    def __init__(self, rpc: JsonRpc) -> None:
        self._rpc = rpc

    async def __call__(self, miner_id: int) -> PeerIdentity | None:
        info = await self._rpc.request("Filecoin.StateMinerInfo", [f"f0{miner_id}", None])
        if not isinstance(info, dict):
            raise RpcSchemaError(f"Unexpected StateMinerInfo result: {info!r}")
        peer_id = info.get("PeerId")
        if not peer_id:
            return None
        if not isinstance(peer_id, str):
            raise RpcSchemaError(f"StateMinerInfo PeerId must be a string: {peer_id!r}")
        return PeerIdentity(peer_id=peer_id, source=self.source)


PeerIdStrategy = Callable[[int], Awaitable["PeerIdentity | None"]]


class FallbackPeerIdResolver:
    """Tries each strategy in order; the first non-empty answer wins."""

    def __init__(self, strategies: Sequence[PeerIdStrategy]) -> None:
        self._strategies = list(strategies)

    async def __call__(self, miner_id: int) -> PeerIdentity:
        last_error: Exception | None = None
        for strategy in self._strategies:
            name = getattr(strategy, "source", type(strategy).__name__)
            try:
                found = await strategy(miner_id)
            except Exception as exc:
                log.debug("Peer ID lookup via %s failed for f0%d: %s", name, miner_id, exc)
                last_error = exc
                continue
            if found is not None:
                return found
            log.debug("No peer ID via %s for f0%d", name, miner_id)
        raise PeerIdentityUnavailable(miner_id) from last_error


class PeerIdentityCache:
    """LRU cache with a fixed TTL in front of a peer ID lookup.

    Failed lookups are not cached, so a transient outage only costs the
    current attempt.
    """

    def __init__(
        self,
        lookup: PeerIdLookup,
        ttl_seconds: float = 3600,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lookup = lookup
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._entries: OrderedDict[int, tuple[float, PeerIdentity]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def __call__(self, miner_id: int) -> PeerIdentity:
        return await self.get(miner_id)

    async def get(self, miner_id: int) -> PeerIdentity:
        now = self._clock()
        cached = self._entries.get(miner_id)
        if cached is not None:
            expires_at, identity = cached
            if now < expires_at:
                self._entries.move_to_end(miner_id)
                log.debug("Peer ID cache hit for f0%d", miner_id)
                return identity
            del self._entries[miner_id]

        identity = await self._lookup(miner_id)
        self._entries[miner_id] = (self._clock() + self._ttl, identity)
        self._entries.move_to_end(miner_id)
        while len(self._entries) > self._max:
            self._entries.popitem(last=False)
        return identity

    def clear(self) -> None:
        self._entries.clear()
