"""Configuration dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field

# Filecoin mainnet
FILECOIN_GENESIS_TIMESTAMP = 1598306400
EPOCH_DURATION_SECONDS = 30

MINER_TO_PEER_ID_CONTRACT = "0x14183aD016Ddc83D638425D6328009aa390339Ce"


@dataclass
class RetryConfig:
    """Budget for idempotent network calls."""

    attempts: int = 5
    backoff: float = 0.5  # seconds, doubled per attempt
    max_backoff: float = 10.0


@dataclass
class ObserverConfig:
    """Complete process configuration, built once at startup."""

    # Daemon
    log_level: str = "info"

    # Chain RPC
    rpc_url: str = "https://api.node.glif.io/rpc/v1"
    rpc_token: str = ""  # sent as bearer token when set
    rpc_timeout: float = 30.0
    peer_id_contract: str = MINER_TO_PEER_ID_CONTRACT
    genesis_timestamp: int = FILECOIN_GENESIS_TIMESTAMP
    epoch_duration: int = EPOCH_DURATION_SECONDS

    # Piece indexer
    piece_indexer_url: str = "https://pix.filspark.com"
    piece_indexer_timeout: float = 30.0

    # Chain observation
    finality_epochs: int = 940
    observe_interval: int = 30  # seconds

    # Payload resolution
    resolve_interval: int = 60
    max_deals_per_pass: int = 1000
    retry_window_days: int = 3
    peer_id_cache_ttl: int = 3600  # seconds
    peer_id_cache_size: int = 1000

    # Submission
    submit_enabled: bool = True
    submit_interval: int = 600
    submit_batch_size: int = 100
    spark_api_url: str = "https://api.filspark.com"
    spark_api_token: str = ""

    # Storage
    db_path: str = "~/.deal_observer/deals.db"

    # Network retries
    retry: RetryConfig = field(default_factory=RetryConfig)
