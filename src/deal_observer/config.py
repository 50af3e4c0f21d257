"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import logging
import os
import random
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from deal_observer.models.config import ObserverConfig, RetryConfig

log = logging.getLogger(__name__)


def select_rpc_url(urls: str) -> str:
    """Pick one endpoint from a comma-separated list."""
    candidates = [u.strip() for u in urls.split(",") if u.strip()]
    if not candidates:
        raise ValueError("No RPC URL configured")
    return random.choice(candidates)


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "DEAL_OBSERVER_",
    environ: dict[str, str] | None = None,
) -> ObserverConfig:
    """Load configuration from a TOML file and the environment.

    Priority (highest wins):
        1. Environment variables (DEAL_OBSERVER_RPC_URLS, GLIF_TOKEN, etc.)
        2. TOML config file
        3. Defaults from ObserverConfig
    """
    env = os.environ if environ is None else environ
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = ObserverConfig()

    # ── Daemon section ─────────────────────────────────────
    daemon = raw.get("daemon", {})
    if v := daemon.get("log_level"):
        cfg.log_level = str(v)

    # ── RPC section ────────────────────────────────────────
    rpc = raw.get("rpc", {})
    rpc_urls = rpc.get("urls") or rpc.get("url")
    if isinstance(rpc_urls, list):
        rpc_urls = ",".join(rpc_urls)
    if v := rpc.get("token"):
        cfg.rpc_token = str(v)
    if (v := rpc.get("timeout")) is not None:
        cfg.rpc_timeout = float(v)
    if v := rpc.get("peer_id_contract"):
        cfg.peer_id_contract = str(v)
    if (v := rpc.get("genesis_timestamp")) is not None:
        cfg.genesis_timestamp = int(v)
    if (v := rpc.get("retry_attempts")) is not None:
        cfg.retry.attempts = int(v)
    if (v := rpc.get("retry_backoff")) is not None:
        cfg.retry.backoff = float(v)

    # ── Piece indexer section ──────────────────────────────
    indexer = raw.get("indexer", {})
    if v := indexer.get("url"):
        cfg.piece_indexer_url = str(v)
    if (v := indexer.get("timeout")) is not None:
        cfg.piece_indexer_timeout = float(v)

    # ── Observer section ───────────────────────────────────
    observer = raw.get("observer", {})
    if (v := observer.get("finality_epochs")) is not None:
        cfg.finality_epochs = int(v)
    if (v := observer.get("interval")) is not None:
        cfg.observe_interval = int(v)

    # ── Resolver section ───────────────────────────────────
    resolver = raw.get("resolver", {})
    if (v := resolver.get("interval")) is not None:
        cfg.resolve_interval = int(v)
    if (v := resolver.get("max_deals")) is not None:
        cfg.max_deals_per_pass = int(v)
    if (v := resolver.get("retry_window_days")) is not None:
        cfg.retry_window_days = int(v)
    if (v := resolver.get("peer_id_cache_ttl")) is not None:
        cfg.peer_id_cache_ttl = int(v)
    if (v := resolver.get("peer_id_cache_size")) is not None:
        cfg.peer_id_cache_size = int(v)

    # ── Submission section ─────────────────────────────────
    submission = raw.get("submission", {})
    if (v := submission.get("enabled")) is not None:
        cfg.submit_enabled = bool(v)
    if (v := submission.get("interval")) is not None:
        cfg.submit_interval = int(v)
    if (v := submission.get("batch_size")) is not None:
        cfg.submit_batch_size = int(v)
    if v := submission.get("spark_api_url"):
        cfg.spark_api_url = str(v)
    if v := submission.get("spark_api_token"):
        cfg.spark_api_token = str(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── Environment variable overrides (highest priority) ──
    if urls := env.get(f"{env_prefix}RPC_URLS") or env.get("RPC_URLS"):
        rpc_urls = urls
    if token := env.get(f"{env_prefix}RPC_TOKEN") or env.get("GLIF_TOKEN"):
        cfg.rpc_token = token
    if pix := env.get(f"{env_prefix}PIECE_INDEXER_URL") or env.get("PIECE_INDEXER_URL"):
        cfg.piece_indexer_url = pix
    if api := env.get(f"{env_prefix}SPARK_API_URL") or env.get("SPARK_API_BASE_URL"):
        cfg.spark_api_url = api
    if api_token := env.get(f"{env_prefix}SPARK_API_TOKEN") or env.get("SPARK_API_TOKEN"):
        cfg.spark_api_token = api_token
    if db_path := env.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db_path
    if finality := env.get(f"{env_prefix}FINALITY_EPOCHS"):
        cfg.finality_epochs = int(finality)
    if submit := env.get(f"{env_prefix}SUBMIT_ENABLED"):
        cfg.submit_enabled = _truthy(submit)
    if level := env.get(f"{env_prefix}LOG_LEVEL"):
        cfg.log_level = level

    if rpc_urls:
        cfg.rpc_url = select_rpc_url(str(rpc_urls))
    log.info("Selected JSON-RPC endpoint %s", cfg.rpc_url)

    # Expand ~ in paths
    cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg


__all__ = ["load_config", "select_rpc_url", "ObserverConfig", "RetryConfig"]
