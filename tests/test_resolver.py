"""Payload resolution pass: state transitions, retry window, per-deal failures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from deal_observer.errors import PieceIndexerError
from deal_observer.models.records import PayloadRetrievabilityState as State
from deal_observer.pipeline.resolver import PayloadResolver, next_state

from tests.factories import PAYLOAD_CID, PIECE_CID, make_active_deal, make_piece_cid
from tests.mocks import MockPeerIds, MockSampler

NOW = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)
PEER = "12D3KooWMiner1000"


async def _insert(store, *deals) -> list:
    assert await store.upsert_active_deals(list(deals), include_enrichment=True)
    return await store.get_all_deals()


def _resolver(store, peers=None, samples=None):
    peer_ids = MockPeerIds(peers if peers is not None else {1000: PEER})
    sampler = MockSampler(samples or {})
    return PayloadResolver(peer_ids, sampler, store), peer_ids, sampler


# ── next_state ────────────────────────────────────────────────────


def test_next_state_transitions():
    fresh = make_active_deal()
    retried = make_active_deal(state=State.UNRESOLVED, last_payload_retrieval_attempt=NOW)

    assert next_state(fresh, "bafy") is State.RESOLVED
    assert next_state(fresh, None) is State.UNRESOLVED
    assert next_state(retried, "bafy") is State.RESOLVED
    assert next_state(retried, None) is State.TERMINALLY_UNRETRIEVABLE
    assert next_state(fresh, "") is State.UNRESOLVED


# ── Single deal outcomes ──────────────────────────────────────────


async def test_first_attempt_resolves(store):
    [deal] = await _insert(store, make_active_deal())
    resolver, peer_ids, sampler = _resolver(store, samples={(PEER, PIECE_CID): PAYLOAD_CID})

    assert await resolver.run_pass(10, now=NOW) == 1

    stored = await store.get_deal(deal.id)
    assert stored.payload_cid == PAYLOAD_CID
    assert stored.payload_retrievability_state is State.RESOLVED
    assert stored.last_payload_retrieval_attempt == NOW
    assert peer_ids.calls == [1000]
    assert sampler.calls == [(PEER, PIECE_CID)]


async def test_unstored_deal_is_refused(store):
    resolver, peer_ids, _ = _resolver(store)

    with pytest.raises(ValueError, match="not been stored"):
        await resolver.resolve_deal(make_active_deal(), NOW)
    assert peer_ids.calls == []


async def test_first_attempt_without_sample_is_unresolved(store):
    [deal] = await _insert(store, make_active_deal())
    resolver, _, _ = _resolver(store)

    assert await resolver.run_pass(10, now=NOW) == 0

    stored = await store.get_deal(deal.id)
    assert stored.payload_cid is None
    assert stored.payload_retrievability_state is State.UNRESOLVED
    assert stored.last_payload_retrieval_attempt == NOW


async def test_second_attempt_without_sample_is_terminal(store):
    [deal] = await _insert(store, make_active_deal(
        state=State.UNRESOLVED, last_payload_retrieval_attempt=NOW - timedelta(days=4),
    ))
    resolver, _, _ = _resolver(store)

    await resolver.run_pass(10, now=NOW)

    stored = await store.get_deal(deal.id)
    assert stored.payload_retrievability_state is State.TERMINALLY_UNRETRIEVABLE
    assert stored.last_payload_retrieval_attempt == NOW


async def test_second_attempt_with_sample_resolves(store):
    [deal] = await _insert(store, make_active_deal(
        state=State.UNRESOLVED, last_payload_retrieval_attempt=NOW - timedelta(days=4),
    ))
    resolver, _, _ = _resolver(store, samples={(PEER, PIECE_CID): PAYLOAD_CID})

    assert await resolver.run_pass(10, now=NOW) == 1
    stored = await store.get_deal(deal.id)
    assert stored.payload_retrievability_state is State.RESOLVED
    assert stored.payload_cid == PAYLOAD_CID


async def test_recent_failure_is_not_retried(store):
    last = NOW - timedelta(days=2)
    [deal] = await _insert(store, make_active_deal(
        state=State.UNRESOLVED, last_payload_retrieval_attempt=last,
    ))
    resolver, peer_ids, _ = _resolver(store)

    await resolver.run_pass(10, now=NOW)

    assert peer_ids.calls == []
    stored = await store.get_deal(deal.id)
    assert stored.payload_retrievability_state is State.UNRESOLVED
    assert stored.last_payload_retrieval_attempt == last


async def test_terminal_deals_are_never_selected(store):
    await _insert(
        store,
        make_active_deal(sector_id=1, state=State.RESOLVED, payload_cid=PAYLOAD_CID),
        make_active_deal(sector_id=2, state=State.TERMINALLY_UNRETRIEVABLE,
                         last_payload_retrieval_attempt=NOW - timedelta(days=30)),
    )
    resolver, peer_ids, _ = _resolver(store)
    assert await resolver.run_pass(10, now=NOW) == 0
    assert peer_ids.calls == []


# ── Retry bound over time ─────────────────────────────────────────


async def test_at_most_two_attempts_over_time(store):
    [deal] = await _insert(store, make_active_deal())
    resolver, _, sampler = _resolver(store)

    await resolver.run_pass(10, now=NOW)
    await resolver.run_pass(10, now=NOW + timedelta(days=1))
    await resolver.run_pass(10, now=NOW + timedelta(days=3))  # exactly at the window edge
    assert len(sampler.calls) == 1

    await resolver.run_pass(10, now=NOW + timedelta(days=3, seconds=1))
    assert len(sampler.calls) == 2
    stored = await store.get_deal(deal.id)
    assert stored.payload_retrievability_state is State.TERMINALLY_UNRETRIEVABLE

    await resolver.run_pass(10, now=NOW + timedelta(days=30))
    assert len(sampler.calls) == 2


# ── Failures ──────────────────────────────────────────────────────


async def test_peer_lookup_failure_leaves_deal_untouched(store):
    await _insert(
        store,
        make_active_deal(sector_id=1, miner_id=999),  # unknown miner
        make_active_deal(sector_id=2, miner_id=1000),
    )
    resolver, _, _ = _resolver(store, samples={(PEER, PIECE_CID): PAYLOAD_CID})

    assert await resolver.run_pass(10, now=NOW) == 1

    by_sector = {d.sector_id: d for d in await store.get_all_deals()}
    assert by_sector[1].payload_retrievability_state is State.NOT_QUERIED
    assert by_sector[1].last_payload_retrieval_attempt is None
    assert by_sector[2].payload_retrievability_state is State.RESOLVED


async def test_indexer_failure_leaves_deal_untouched(store):
    [deal] = await _insert(store, make_active_deal())
    resolver, _, sampler = _resolver(store)
    sampler.errors[(PEER, PIECE_CID)] = PieceIndexerError("HTTP 503")

    assert await resolver.run_pass(10, now=NOW) == 0

    stored = await store.get_deal(deal.id)
    assert stored.payload_retrievability_state is State.NOT_QUERIED
    assert stored.last_payload_retrieval_attempt is None


async def test_max_deals_bounds_the_pass(store):
    await _insert(store, *[make_active_deal(sector_id=i) for i in range(5)])
    resolver, _, sampler = _resolver(store)

    await resolver.run_pass(2, now=NOW)
    assert len(sampler.calls) == 2
    assert await store.count_by_state(State.NOT_QUERIED) == 3


# ── End to end ────────────────────────────────────────────────────


async def test_fixture_mapping_end_to_end(store):
    peers = {1000: "12D3KooWA", 1001: "12D3KooWB", 1002: "12D3KooWC"}
    samples = {
        ("12D3KooWA", make_piece_cid(1)): "bafypayload1",
        ("12D3KooWA", make_piece_cid(2)): "bafypayload2",
        ("12D3KooWB", make_piece_cid(3)): "bafypayload3",
        ("12D3KooWC", make_piece_cid(4)): None,
    }
    await _insert(
        store,
        make_active_deal(sector_id=1, miner_id=1000, piece_cid=make_piece_cid(1)),
        make_active_deal(sector_id=2, miner_id=1000, piece_cid=make_piece_cid(2)),
        make_active_deal(sector_id=3, miner_id=1001, piece_cid=make_piece_cid(3)),
        make_active_deal(sector_id=4, miner_id=1002, piece_cid=make_piece_cid(4)),
        make_active_deal(sector_id=5, miner_id=1003, piece_cid=make_piece_cid(5)),
    )
    resolver, _, _ = _resolver(store, peers=peers, samples=samples)

    assert await resolver.run_pass(100, now=NOW) == 3

    by_sector = {d.sector_id: d for d in await store.get_all_deals()}
    assert by_sector[1].payload_cid == "bafypayload1"
    assert by_sector[2].payload_cid == "bafypayload2"
    assert by_sector[3].payload_cid == "bafypayload3"
    assert by_sector[4].payload_retrievability_state is State.UNRESOLVED
    assert by_sector[5].payload_retrievability_state is State.NOT_QUERIED
    assert await store.count_unresolved_payload() == 2
