"""Daemon wiring, full pipeline, stats and CLI."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from click.testing import CliRunner

from deal_observer.api.stats import StatsAggregator
from deal_observer.chain.epochs import datetime_to_epoch
from deal_observer.chain.peer_id import PeerIdentityCache
from deal_observer.cli import cli
from deal_observer.daemon import DealObserverDaemon
from deal_observer.models.records import PayloadRetrievabilityState as State
from deal_observer.pipeline.observer import ChainObserver
from deal_observer.pipeline.resolver import PayloadResolver
from deal_observer.pipeline.submission import SubmissionScheduler
from deal_observer.storage.sqlite import SQLiteDealStore

from tests.conftest import make_test_config
from tests.factories import PAYLOAD_CID, make_active_deal, make_piece_cid, make_raw_event


def _wire(d: DealObserverDaemon, store, chain, peer_ids, sampler, submitter) -> DealObserverDaemon:
    d.store = store
    d.observer = ChainObserver(chain, store, d._cfg.finality_epochs)
    d.resolver = PayloadResolver(peer_ids, sampler, store)
    d.submission = SubmissionScheduler(store, submitter)
    d.stats = StatsAggregator(store)
    return d


@pytest.fixture
async def daemon(test_config, store, chain, mock_peer_ids, mock_sampler, mock_submitter):
    """DealObserverDaemon with mocked chain, indexer and submitter."""
    return _wire(
        DealObserverDaemon(test_config), store, chain,
        mock_peer_ids, mock_sampler, mock_submitter,
    )


# ── Wiring ────────────────────────────────────────────────────────


def test_daemon_builds_components_from_config():
    cfg = make_test_config(peer_id_cache_ttl=120, peer_id_cache_size=5)
    d = DealObserverDaemon(cfg)

    assert d.rpc.url == cfg.rpc_url
    assert isinstance(d.peer_ids, PeerIdentityCache)
    assert [loop.name for loop in d.build_loops()] == ["observe", "resolve", "submit"]


def test_submission_loop_can_be_disabled():
    d = DealObserverDaemon(make_test_config(submit_enabled=False))
    assert [loop.name for loop in d.build_loops()] == ["observe", "resolve"]


# ── Full pipeline ─────────────────────────────────────────────────


async def test_observe_resolve_submit(daemon, store, mock_rpc, mock_peer_ids,
                                      mock_sampler, mock_submitter):
    now = datetime.now(timezone.utc)
    watermark = datetime_to_epoch(now - timedelta(days=3))
    current = datetime_to_epoch(now)
    await store.upsert_active_deals([make_active_deal(
        activated_at_epoch=watermark, sector_id=0, term_start_epoch=current - 100,
    )])
    mock_rpc.head = watermark + 3 + 940
    for offset in (1, 2, 3):
        mock_rpc.add_events(watermark + offset, make_raw_event(
            height=watermark + offset, provider=1000, sector=offset,
            piece_cid=make_piece_cid(offset), term_start=current - 100, term_min=518_400,
        ))
    mock_peer_ids.peers[1000] = "12D3KooWMiner"
    mock_sampler.samples[("12D3KooWMiner", make_piece_cid(1))] = "bafypayload1"
    mock_sampler.samples[("12D3KooWMiner", make_piece_cid(2))] = "bafypayload2"

    report = await daemon.run_chain_observation_pass()
    assert report.deals_observed == 3

    assert await daemon.run_payload_resolution_pass(100) == 2

    submitted = await daemon.run_submission_pass(10)
    assert submitted.submitted == 2
    assert sorted(d.payload_cid for d in mock_submitter.batches[0]) == [
        "bafypayload1", "bafypayload2",
    ]

    stats = await daemon.stats.snapshot()
    assert stats.total == 4
    assert stats.resolved == 2
    assert stats.unresolved == 2  # the third deal and the seed
    assert stats.submitted == 2
    assert stats.highest_activated_epoch == watermark + 3


async def test_pass_defaults_come_from_config(daemon, store, mock_peer_ids):
    daemon._cfg.max_deals_per_pass = 1
    await store.upsert_active_deals([make_active_deal(sector_id=i) for i in range(3)])
    await daemon.run_payload_resolution_pass()
    assert len(mock_peer_ids.calls) == 1


async def test_explicit_zero_is_not_replaced_by_config(daemon, store, mock_peer_ids, mock_submitter):
    await store.upsert_active_deals([
        make_active_deal(sector_id=i, payload_cid=PAYLOAD_CID, activated_at_epoch=0)
        for i in range(3)
    ])

    assert await daemon.run_payload_resolution_pass(0) == 0
    assert mock_peer_ids.calls == []
    report = await daemon.run_submission_pass(0)
    assert report.submitted == 0
    assert mock_submitter.batches == []


async def test_request_stop_keeps_one_task(chain, mock_peer_ids, mock_sampler, mock_submitter):
    cfg = make_test_config(observe_interval=60, resolve_interval=60, submit_interval=60)
    d = DealObserverDaemon(cfg)
    _wire(d, d.store, chain, mock_peer_ids, mock_sampler, mock_submitter)

    task = asyncio.ensure_future(d.start())
    for _ in range(200):
        if d._loops and all(loop.iterations for loop in d._loops):
            break
        await asyncio.sleep(0.01)

    stop = d.request_stop()
    assert d.request_stop() is stop
    await asyncio.wait_for(stop, timeout=5)
    await asyncio.wait_for(task, timeout=5)
    assert stop.exception() is None


async def test_start_and_stop(chain, mock_rpc, mock_peer_ids, mock_sampler, mock_submitter):
    cfg = make_test_config(observe_interval=60, resolve_interval=60, submit_interval=60)
    d = DealObserverDaemon(cfg)
    _wire(d, d.store, chain, mock_peer_ids, mock_sampler, mock_submitter)

    task = asyncio.ensure_future(d.start())
    for _ in range(200):
        if d._loops and all(loop.iterations for loop in d._loops):
            break
        await asyncio.sleep(0.01)
    assert all(loop.iterations == 1 for loop in d._loops)

    await d.stop()
    await asyncio.wait_for(task, timeout=5)
    assert d.store._db is None


# ── Stats ─────────────────────────────────────────────────────────


async def test_stats_snapshot(store, caplog):
    await store.upsert_active_deals([
        make_active_deal(sector_id=1),
        make_active_deal(sector_id=2, state=State.RESOLVED, payload_cid=PAYLOAD_CID),
        make_active_deal(sector_id=3, state=State.TERMINALLY_UNRETRIEVABLE),
        make_active_deal(sector_id=4, reverted=True),
    ], include_enrichment=True)

    caplog.set_level("INFO")
    stats = await StatsAggregator(store).log_snapshot()

    assert stats.total == 4
    assert stats.not_queried == 2
    assert stats.resolved == 1
    assert stats.terminally_unretrievable == 1
    assert stats.missing_payload_cid == 3
    assert stats.reverted == 1
    assert "4 total" in caplog.text


# ── CLI ───────────────────────────────────────────────────────────


def _env(tmp_path) -> dict:
    return {"DEAL_OBSERVER_DB_PATH": str(tmp_path / "deals.db")}


def test_cli_status(tmp_path):
    result = CliRunner().invoke(cli, ["status"], env=_env(tmp_path))
    assert result.exit_code == 0, result.output
    assert "Finality:       940 epochs" in result.output
    assert str(tmp_path / "deals.db") in result.output


def test_cli_stats_on_empty_store(tmp_path):
    result = CliRunner().invoke(cli, ["stats"], env=_env(tmp_path))
    assert result.exit_code == 0, result.output
    assert "Total deals:              0" in result.output


def test_cli_show_missing_deal(tmp_path):
    result = CliRunner().invoke(cli, ["show", "1"], env=_env(tmp_path))
    assert result.exit_code == 1


def test_cli_show_deal(tmp_path):
    async def seed():
        s = SQLiteDealStore(str(tmp_path / "deals.db"))
        await s.initialize()
        await s.upsert_active_deals([make_active_deal(miner_id=1234)])
        await s.close()

    asyncio.run(seed())
    result = CliRunner().invoke(cli, ["show", "1"], env=_env(tmp_path))
    assert result.exit_code == 0, result.output
    assert "f01234" in result.output
    assert "PAYLOAD_CID_NOT_QUERIED_YET" in result.output
