"""Main daemon - wires all components together and runs the three loops."""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import timedelta

from deal_observer.api.stats import StatsAggregator
from deal_observer.chain.client import ChainClient
from deal_observer.chain.peer_id import (
    FallbackPeerIdResolver,
    MinerInfoPeerIdStrategy,
    PeerIdentityCache,
    SmartContractPeerIdStrategy,
)
from deal_observer.chain.rpc import LotusRpcClient
from deal_observer.indexer.pix import PieceIndexerClient
from deal_observer.models.config import ObserverConfig
from deal_observer.models.records import ObservationReport, SubmissionReport
from deal_observer.pipeline.observer import ChainObserver
from deal_observer.pipeline.resolver import PayloadResolver
from deal_observer.pipeline.submission import SubmissionScheduler
from deal_observer.scheduler import PeriodicLoop
from deal_observer.storage.sqlite import SQLiteDealStore
from deal_observer.submit.spark_api import SparkApiSubmitter

log = logging.getLogger(__name__)


class DealObserverDaemon:
    """Observes claim events, resolves payload CIDs and submits eligible deals.

    Components are built from the config once; each pipeline pass is also
    callable on its own (used by the one-shot CLI commands).
    """

    def __init__(self, cfg: ObserverConfig) -> None:
        self._cfg = cfg
        self._loops: list[PeriodicLoop] = []
        self._tasks: list[asyncio.Future] = []
        self._stop_task: asyncio.Task | None = None

        # Core components
        self.store = SQLiteDealStore(cfg.db_path, cfg.genesis_timestamp, cfg.epoch_duration)
        self.rpc = LotusRpcClient(cfg.rpc_url, cfg.rpc_token, cfg.rpc_timeout, cfg.retry)
        self.piece_indexer = PieceIndexerClient(
            cfg.piece_indexer_url, cfg.piece_indexer_timeout, cfg.retry,
        )
        self.peer_ids = PeerIdentityCache(
            FallbackPeerIdResolver([
                SmartContractPeerIdStrategy(self.rpc, cfg.peer_id_contract),
                MinerInfoPeerIdStrategy(self.rpc),
            ]),
            ttl_seconds=cfg.peer_id_cache_ttl,
            max_entries=cfg.peer_id_cache_size,
        )
        self.chain = ChainClient(self.rpc, self.peer_ids, self.piece_indexer)

        # Pipeline passes
        self.observer = ChainObserver(self.chain, self.store, cfg.finality_epochs)
        self.resolver = PayloadResolver(
            self.chain.get_peer_identity,
            self.chain.fetch_payload_sample,
            self.store,
            timedelta(days=cfg.retry_window_days),
        )
        self.submitter = SparkApiSubmitter(cfg.spark_api_url, cfg.spark_api_token)
        self.submission = SubmissionScheduler(self.store, self.submitter)
        self.stats = StatsAggregator(self.store)

    # ── One-shot passes ────────────────────────────────────

    async def run_chain_observation_pass(self) -> ObservationReport:
        return await self.observer.run_pass()

    async def run_payload_resolution_pass(self, max_deals: int | None = None) -> int:
        if max_deals is None:
            max_deals = self._cfg.max_deals_per_pass
        return await self.resolver.run_pass(max_deals)

    async def run_submission_pass(self, batch_size: int | None = None) -> SubmissionReport:
        if batch_size is None:
            batch_size = self._cfg.submit_batch_size
        return await self.submission.run_pass(batch_size)

    # ── Lifecycle ──────────────────────────────────────────

    def build_loops(self) -> list[PeriodicLoop]:
        cfg = self._cfg
        loops = [
            PeriodicLoop("observe", self._observe_and_log, cfg.observe_interval),
            PeriodicLoop("resolve", self.run_payload_resolution_pass, cfg.resolve_interval),
        ]
        if cfg.submit_enabled:
            loops.append(
                PeriodicLoop("submit", self.run_submission_pass, cfg.submit_interval)
            )
        else:
            log.info("Submission disabled")
        return loops

    async def _observe_and_log(self) -> ObservationReport:
        report = await self.run_chain_observation_pass()
        await self.stats.log_snapshot()
        return report

    async def start(self) -> None:
        """Initialize the store and run all loops until stopped."""
        log.info("Starting deal_observer daemon")
        log.info("  RPC: %s", self._cfg.rpc_url)
        log.info("  Piece indexer: %s", self._cfg.piece_indexer_url)
        log.info("  Finality: %d epochs", self._cfg.finality_epochs)
        log.info("  DB: %s", self._cfg.db_path)

        await self.store.initialize()
        self._loops = self.build_loops()
        self._tasks = [asyncio.ensure_future(loop.run_forever()) for loop in self._loops]
        try:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            await self.store.close()
            log.info("Daemon shut down cleanly")

    async def stop(self) -> None:
        """Stop all loops. An in-flight pass is allowed to finish."""
        log.info("Stop requested")
        for loop, task in zip(self._loops, self._tasks):
            loop.stop()
            if not loop.busy:
                task.cancel()

    def request_stop(self) -> asyncio.Task:
        """Schedule stop() from a signal handler. Repeated requests share one task."""
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self.stop())
        return self._stop_task


async def run_daemon(cfg: ObserverConfig) -> None:
    """Entry point for running the daemon."""
    daemon = DealObserverDaemon(cfg)

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, daemon.request_stop)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()
