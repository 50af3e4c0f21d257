"""Shared fixtures for deal_observer tests."""

from __future__ import annotations

import pytest
from aiohttp import web
from pytest_metadata.plugin import metadata_key

from deal_observer.chain.client import ChainClient
from deal_observer.models.config import ObserverConfig, RetryConfig
from deal_observer.storage.sqlite import SQLiteDealStore

from tests.mocks import MockPeerIds, MockRpc, MockSampler, MockSubmitter

RPC_URL = "https://api.node.glif.io/rpc/v1"
PIECE_INDEXER_URL = "https://pix.filspark.com"


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add endpoint info to the report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Chain RPC"] = RPC_URL
    meta["Piece Indexer"] = PIECE_INDEXER_URL


def make_test_config(**overrides) -> ObserverConfig:
    """Build an ObserverConfig suitable for testing."""
    defaults = dict(
        rpc_url="http://127.0.0.1:1234/rpc/v1",
        rpc_timeout=5.0,
        piece_indexer_url="http://127.0.0.1:1235",
        piece_indexer_timeout=5.0,
        finality_epochs=940,
        observe_interval=1,
        resolve_interval=1,
        submit_interval=1,
        spark_api_url="http://127.0.0.1:1236",
        spark_api_token="test-token",
        db_path=":memory:",
        retry=RetryConfig(attempts=3, backoff=0, max_backoff=0),
    )
    defaults.update(overrides)
    return ObserverConfig(**defaults)


@pytest.fixture
def test_config():
    """Default ObserverConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteDealStore."""
    s = SQLiteDealStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def mock_rpc():
    return MockRpc(head=4_101_000)


@pytest.fixture
def mock_peer_ids():
    return MockPeerIds()


@pytest.fixture
def mock_sampler():
    return MockSampler()


@pytest.fixture
def mock_submitter():
    return MockSubmitter(succeed=True)


@pytest.fixture
def chain(mock_rpc, mock_peer_ids, mock_sampler):
    """ChainClient over the mock RPC, so raw events go through the real decoder."""

    class _Indexer:
        async def fetch_payload_sample(self, peer_id, piece_cid):
            return await mock_sampler(peer_id, piece_cid)

    return ChainClient(mock_rpc, mock_peer_ids, _Indexer())


@pytest.fixture
async def serve():
    """Start aiohttp apps on free local ports; returns their base URLs."""
    runners: list[web.AppRunner] = []

    async def _serve(app: web.Application) -> str:
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, "127.0.0.1", 0)
        await site.start()
        runners.append(runner)
        host, port = runner.addresses[0][:2]
        return f"http://{host}:{port}"

    yield _serve
    for runner in runners:
        await runner.cleanup()
