"""SQLite implementation of the DealStore protocol."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Sequence

import aiosqlite

from deal_observer.chain.epochs import datetime_to_epoch, epoch_to_datetime
from deal_observer.models.config import EPOCH_DURATION_SECONDS, FILECOIN_GENESIS_TIMESTAMP
from deal_observer.models.records import (
    ActiveDeal,
    EligibleDeal,
    PayloadRetrievabilityState,
)

log = logging.getLogger(__name__)

SUBMISSION_DELAY = timedelta(days=2)

SCHEMA = """
CREATE TABLE IF NOT EXISTS active_deals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    activated_at_epoch INTEGER NOT NULL,
    miner_id INTEGER NOT NULL,
    client_id INTEGER NOT NULL,
    piece_cid TEXT NOT NULL,
    piece_size INTEGER NOT NULL,
    term_start_epoch INTEGER NOT NULL,
    term_min INTEGER NOT NULL,
    term_max INTEGER NOT NULL,
    sector_id INTEGER NOT NULL,
    reverted INTEGER NOT NULL DEFAULT 0,
    payload_cid TEXT,
    payload_retrievability_state TEXT NOT NULL DEFAULT 'PAYLOAD_CID_NOT_QUERIED_YET'
        CHECK (payload_retrievability_state IN (
            'PAYLOAD_CID_NOT_QUERIED_YET',
            'PAYLOAD_CID_UNRESOLVED',
            'PAYLOAD_CID_RESOLVED',
            'PAYLOAD_CID_TERMINALLY_UNRETRIEVABLE'
        )),
    last_payload_retrieval_attempt TEXT,
    submitted_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (
        activated_at_epoch, miner_id, client_id, piece_cid, piece_size,
        term_start_epoch, term_min, term_max, sector_id
    )
);
CREATE INDEX IF NOT EXISTS idx_active_deals_activated ON active_deals(activated_at_epoch);
CREATE INDEX IF NOT EXISTS idx_active_deals_state ON active_deals(payload_retrievability_state);
CREATE INDEX IF NOT EXISTS idx_active_deals_submitted ON active_deals(submitted_at);
"""

_INSERT_COLUMNS = (
    "activated_at_epoch, miner_id, client_id, piece_cid, piece_size,"
    " term_start_epoch, term_min, term_max, sector_id, reverted,"
    " payload_cid, payload_retrievability_state, last_payload_retrieval_attempt"
)

_CONFLICT_TARGET = (
    "activated_at_epoch, miner_id, client_id, piece_cid, piece_size,"
    " term_start_epoch, term_min, term_max, sector_id"
)

# A re-observed fact carries no payload CID; never let it erase a resolved one.
_UPSERT_SQL = (
    f"INSERT INTO active_deals ({_INSERT_COLUMNS})"
    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
    f" ON CONFLICT ({_CONFLICT_TARGET}) DO UPDATE SET"
    " payload_cid=COALESCE(excluded.payload_cid, active_deals.payload_cid)"
)

_UPSERT_ENRICHMENT_SQL = (
    _UPSERT_SQL
    + ", payload_retrievability_state=excluded.payload_retrievability_state,"
    " last_payload_retrieval_attempt=excluded.last_payload_retrieval_attempt"
)


def to_db_time(when: datetime | None) -> str | None:
    """Fixed-width UTC ISO text, so SQL string comparison orders by time."""
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteDealStore:
    """Owns the active_deals table.

    Every write is a single statement or a single ``executemany`` batch
    committed as one transaction; the upsert's conflict target is the only
    concurrency control.
    """

    def __init__(
        self,
        db_path: str,
        genesis_timestamp: int = FILECOIN_GENESIS_TIMESTAMP,
        epoch_duration: int = EPOCH_DURATION_SECONDS,
    ) -> None:
        self._db_path = db_path
        self._genesis = genesis_timestamp
        self._epoch_duration = epoch_duration
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(Path(self._db_path).expanduser()))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Ingestion ──────────────────────────────────────────

    async def upsert_active_deals(
        self, deals: Sequence[ActiveDeal], *, include_enrichment: bool = False,
    ) -> bool:
        """Insert deals in one batch; on natural-key conflict update payload_cid only.

        With ``include_enrichment`` the retrievability state and last attempt
        are overwritten as well. A failed write is logged, rolled back and
        reported by returning False rather than raised.
        """
        if not deals:
            return True
        sql = _UPSERT_ENRICHMENT_SQL if include_enrichment else _UPSERT_SQL
        rows = [
            (
                d.activated_at_epoch, d.miner_id, d.client_id, d.piece_cid,
                d.piece_size, d.term_start_epoch, d.term_min, d.term_max,
                d.sector_id, int(d.reverted), d.payload_cid,
                PayloadRetrievabilityState(d.payload_retrievability_state).value,
                to_db_time(d.last_payload_retrieval_attempt),
            )
            for d in deals
        ]
        try:
            await self.db.executemany(sql, rows)
            await self.db.commit()
        except aiosqlite.Error as exc:
            log.error("Error inserting %d deals: %s", len(rows), exc)
            await self.db.rollback()
            return False
        return True

    async def highest_activated_epoch(self) -> int | None:
        async with self.db.execute(
            "SELECT MAX(activated_at_epoch) AS m FROM active_deals"
        ) as cur:
            row = await cur.fetchone()
            return row["m"] if row else None

    async def lowest_activated_epoch(self) -> int | None:
        async with self.db.execute(
            "SELECT MIN(activated_at_epoch) AS m FROM active_deals"
        ) as cur:
            row = await cur.fetchone()
            return row["m"] if row else None

    # ── Payload resolution ─────────────────────────────────

    async def deals_needing_resolution(
        self, retry_cutoff: datetime, limit: int,
    ) -> list[ActiveDeal]:
        async with self.db.execute(
            "SELECT * FROM active_deals"
            " WHERE payload_cid IS NULL"
            " AND payload_retrievability_state IN (?, ?)"
            " AND (last_payload_retrieval_attempt IS NULL"
            "      OR last_payload_retrieval_attempt < ?)"
            " ORDER BY activated_at_epoch ASC, id ASC LIMIT ?",
            (
                PayloadRetrievabilityState.NOT_QUERIED.value,
                PayloadRetrievabilityState.UNRESOLVED.value,
                to_db_time(retry_cutoff),
                limit,
            ),
        ) as cur:
            return [_row_to_deal(row) async for row in cur]

    async def update_resolution(
        self,
        deal_id: int,
        payload_cid: str | None,
        new_state: PayloadRetrievabilityState,
        attempted_at: datetime,
    ) -> None:
        await self.db.execute(
            "UPDATE active_deals SET payload_cid=?, payload_retrievability_state=?,"
            " last_payload_retrieval_attempt=? WHERE id=?",
            (
                payload_cid,
                PayloadRetrievabilityState(new_state).value,
                to_db_time(attempted_at),
                deal_id,
            ),
        )
        await self.db.commit()

    # ── Aggregates ─────────────────────────────────────────

    async def count_by_state(self, state: PayloadRetrievabilityState) -> int:
        return await self._count(
            "SELECT COUNT(*) AS c FROM active_deals WHERE payload_retrievability_state=?",
            (PayloadRetrievabilityState(state).value,),
        )

    async def count_unresolved_payload(self) -> int:
        return await self._count(
            "SELECT COUNT(*) AS c FROM active_deals WHERE payload_cid IS NULL"
        )

    async def count_reverted(self) -> int:
        return await self._count(
            "SELECT COUNT(*) AS c FROM active_deals WHERE reverted=1"
        )

    async def count_submitted(self) -> int:
        return await self._count(
            "SELECT COUNT(*) AS c FROM active_deals WHERE submitted_at IS NOT NULL"
        )

    async def count_all(self) -> int:
        return await self._count("SELECT COUNT(*) AS c FROM active_deals")

    async def _count(self, sql: str, params: tuple = ()) -> int:
        async with self.db.execute(sql, params) as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0

    # ── Submission ─────────────────────────────────────────

    async def unsubmitted_eligible_deals(
        self, now: datetime, batch_size: int,
    ) -> list[EligibleDeal]:
        """Resolved deals activated at least two days ago whose term is still running."""
        activated_before = datetime_to_epoch(
            now - SUBMISSION_DELAY, self._genesis, self._epoch_duration,
        )
        current_epoch = datetime_to_epoch(now, self._genesis, self._epoch_duration)
        async with self.db.execute(
            "SELECT id, miner_id, client_id, piece_cid, piece_size, payload_cid,"
            " term_start_epoch + term_min AS expires_at_epoch"
            " FROM active_deals"
            " WHERE payload_cid IS NOT NULL"
            " AND submitted_at IS NULL"
            " AND activated_at_epoch <= ?"
            " AND term_start_epoch + term_min > ?"
            " ORDER BY id LIMIT ?",
            (activated_before, current_epoch, batch_size),
        ) as cur:
            return [
                EligibleDeal(
                    id=row["id"],
                    miner_id=row["miner_id"],
                    client_id=row["client_id"],
                    piece_cid=row["piece_cid"],
                    piece_size=row["piece_size"],
                    payload_cid=row["payload_cid"],
                    expires_at=epoch_to_datetime(
                        row["expires_at_epoch"], self._genesis, self._epoch_duration,
                    ),
                )
                async for row in cur
            ]

    async def mark_submitted(self, deal_ids: Iterable[int], now: datetime | None = None) -> None:
        ids = list(deal_ids)
        if not ids:
            return
        placeholders = ",".join("?" for _ in ids)
        await self.db.execute(
            f"UPDATE active_deals SET submitted_at=?"
            f" WHERE submitted_at IS NULL AND id IN ({placeholders})",
            [to_db_time(now or _now()), *ids],
        )
        await self.db.commit()

    # ── Inspection ─────────────────────────────────────────

    async def get_deal(self, deal_id: int) -> ActiveDeal | None:
        async with self.db.execute(
            "SELECT * FROM active_deals WHERE id=?", (deal_id,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_deal(row) if row else None

    async def get_all_deals(self) -> list[ActiveDeal]:
        async with self.db.execute("SELECT * FROM active_deals ORDER BY id") as cur:
            return [_row_to_deal(row) async for row in cur]


# ── Row converters ─────────────────────────────────────────


def _row_to_deal(row: aiosqlite.Row) -> ActiveDeal:
    return ActiveDeal(
        id=row["id"],
        activated_at_epoch=row["activated_at_epoch"],
        miner_id=row["miner_id"],
        client_id=row["client_id"],
        piece_cid=row["piece_cid"],
        piece_size=row["piece_size"],
        term_start_epoch=row["term_start_epoch"],
        term_min=row["term_min"],
        term_max=row["term_max"],
        sector_id=row["sector_id"],
        reverted=bool(row["reverted"]),
        payload_cid=row["payload_cid"],
        payload_retrievability_state=PayloadRetrievabilityState(
            row["payload_retrievability_state"]
        ),
        last_payload_retrieval_attempt=from_db_time(row["last_payload_retrieval_attempt"]),
        submitted_at=from_db_time(row["submitted_at"]),
    )
