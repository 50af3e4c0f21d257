"""Exception taxonomy for the observation, resolution and submission pipeline.

Transient transport errors are raised only after the retry budget is
exhausted. Schema errors are never retried. Domain errors are scoped to one
unit of work (a height or a deal) and do not abort the surrounding pass.
"""

from __future__ import annotations


class DealObserverError(Exception):
    """Base class for all pipeline errors."""


# ── Transport ──────────────────────────────────────────


class TransientTransportError(DealObserverError):
    """Network/HTTP failure that survived every retry attempt."""


class RpcUnavailable(TransientTransportError):
    """The chain RPC endpoint could not be reached or answered non-2xx."""

    def __init__(self, method: str, detail: str = "") -> None:
        self.method = method
        msg = f"RPC request {method} failed"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class PieceIndexerError(TransientTransportError):
    """The piece indexer could not be reached or returned an unparsable body."""


# ── Schema ─────────────────────────────────────────────


class RpcSchemaError(DealObserverError):
    """An RPC response did not match the expected contract."""


class RpcCallError(DealObserverError):
    """The RPC endpoint answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        self.method = method
        self.code = code
        super().__init__(f"RPC {method} returned error {code}: {message}")


# ── Domain ─────────────────────────────────────────────


class DomainError(DealObserverError):
    """A single unit of work cannot be processed."""


class UnknownEventType(DomainError):
    def __init__(self, event_type: object) -> None:
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type!r}")


class MalformedEvent(DomainError):
    """A raw actor event failed schema validation."""


class PeerIdentityUnavailable(DomainError):
    def __init__(self, miner_id: int) -> None:
        self.miner_id = miner_id
        super().__init__(f"Error fetching index provider PeerID for miner f0{miner_id}")


# ── Delivery ───────────────────────────────────────────


class SubmissionError(DealObserverError):
    """The collection API rejected or failed to accept a batch."""
