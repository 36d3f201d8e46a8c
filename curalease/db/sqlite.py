import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from curalease.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

# Allowed column names for dynamic UPDATE queries to prevent SQL injection.
VALID_SESSION_COLUMNS = frozenset({
    "status", "cursor_index", "reviewed_count", "checkpoint_blob", "notes",
    "updated_at", "ended_at", "folded_at",
})

VALID_WORK_ITEM_COLUMNS = frozenset({
    "pdb_id", "chain_id", "sequence_length", "best_confidence",
    "evidence_count", "is_representative",
})

_SESSION_JSON_FIELDS = ("assigned_item_ids", "checkpoint_blob")
_DECISION_BOOL_FIELDS = (
    "has_domain", "domain_assigned_correctly", "boundaries_correct",
    "is_fragment", "is_repeat_protein", "flagged_for_review",
)
_DECISION_COLUMNS = _DECISION_BOOL_FIELDS + (
    "confidence_level", "review_time_seconds", "notes",
    "primary_evidence_type", "primary_evidence_source_id", "reference_domain_id",
    "evidence_confidence", "evidence_evalue",
)


def _utcnow() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Fixed-precision UTC ISO string; lexicographic order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _utcnow_iso() -> str:
    return to_iso(_utcnow())


def _bool_or_none(value: Any) -> Optional[int]:
    if value is None:
        return None
    return 1 if value else 0


class CurationStore:
    """SQLite-backed durable store for work items, leases, sessions and decisions.

    The correctness-critical primitives are single statements
    (insert-if-absent on leases, compare-and-set on session status).
    Multi-statement operations run inside ``transaction()``, which opens
    ``BEGIN IMMEDIATE`` so concurrent processes serialize on the write lock.
    Store calls made while a transaction is open on this connection join it.
    """

    def __init__(self, db_path: str = ":memory:", busy_timeout_ms: int = 5000):
        self.db_path = db_path
        if db_path != ":memory:":
            db_dir = os.path.dirname(db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        self._conn = sqlite3.connect(
            db_path,
            check_same_thread=False,
            timeout=busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        self._conn.execute("PRAGMA synchronous=FULL")
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._init_db()

    def close(self) -> None:
        """Close the persistent connection for clean shutdown."""
        with self._lock:
            if self._conn:
                try:
                    self._conn.close()
                except sqlite3.Error:
                    logger.warning("Error closing curation store %s", self.db_path)
                self._conn = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"CurationStore(db_path={self.db_path!r})"

    def _init_db(self) -> None:
        with self._get_connection(write=False) as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS work_items (
                    item_id TEXT PRIMARY KEY,
                    pdb_id TEXT,
                    chain_id TEXT,
                    sequence_length INTEGER NOT NULL DEFAULT 0,
                    best_confidence REAL NOT NULL DEFAULT 0.0,
                    evidence_count INTEGER NOT NULL DEFAULT 0,
                    is_representative INTEGER,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_work_items_rank
                    ON work_items(best_confidence DESC, evidence_count DESC, item_id);

                CREATE TABLE IF NOT EXISTS leases (
                    item_id TEXT PRIMARY KEY,
                    curator_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    acquired_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_leases_session ON leases(session_id);
                CREATE INDEX IF NOT EXISTS idx_leases_expires ON leases(expires_at);

                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    curator_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'in_progress' CHECK (
                        status IN ('in_progress', 'abandoned', 'committed', 'discarded', 'completed')
                    ),
                    target_size INTEGER NOT NULL,
                    assigned_item_ids TEXT NOT NULL DEFAULT '[]',
                    cursor_index INTEGER NOT NULL DEFAULT 0,
                    reviewed_count INTEGER NOT NULL DEFAULT 0,
                    checkpoint_blob TEXT,
                    notes TEXT,
                    folded_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    ended_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_status_updated ON sessions(status, updated_at);
                CREATE INDEX IF NOT EXISTS idx_sessions_curator ON sessions(curator_id);
                CREATE INDEX IF NOT EXISTS idx_sessions_created ON sessions(created_at DESC);

                CREATE TABLE IF NOT EXISTS decisions (
                    session_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    has_domain INTEGER,
                    domain_assigned_correctly INTEGER,
                    boundaries_correct INTEGER,
                    is_fragment INTEGER DEFAULT 0,
                    is_repeat_protein INTEGER DEFAULT 0,
                    confidence_level INTEGER,
                    flagged_for_review INTEGER DEFAULT 0,
                    review_time_seconds REAL,
                    notes TEXT,
                    primary_evidence_type TEXT,
                    primary_evidence_source_id TEXT,
                    reference_domain_id TEXT,
                    evidence_confidence REAL,
                    evidence_evalue REAL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (session_id, item_id)
                );

                CREATE TABLE IF NOT EXISTS curation_status (
                    item_id TEXT PRIMARY KEY,
                    is_curated INTEGER NOT NULL DEFAULT 0,
                    last_curator_id TEXT,
                    last_curated_at TEXT,
                    last_session_id TEXT,
                    curation_count INTEGER NOT NULL DEFAULT 0
                );
                """
            )

    @contextmanager
    def _get_connection(self, *, write: bool = True):
        """Yield the persistent connection under the thread lock.

        The outermost write scope owns a ``BEGIN IMMEDIATE`` transaction and
        commits or rolls it back; nested scopes join it.
        """
        with self._lock:
            if self._conn is None:
                raise StoreUnavailableError("Curation store is closed")
            if self._depth:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            began = False
            try:
                if write:
                    self._conn.execute("BEGIN IMMEDIATE")
                    began = True
                yield self._conn
                if began:
                    self._conn.commit()
            except sqlite3.OperationalError as exc:
                if began:
                    self._rollback()
                raise StoreUnavailableError(f"Curation store unavailable: {exc}") from exc
            except BaseException:
                if began:
                    self._rollback()
                raise
            finally:
                self._depth = 0

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error:
            logger.exception("Rollback failed on %s", self.db_path)

    def transaction(self):
        """Open (or join) a write transaction spanning several store calls."""
        return self._get_connection(write=True)

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def upsert_work_items(self, items: Iterable[Dict[str, Any]]) -> int:
        now = _utcnow_iso()
        rows = []
        for item in items:
            item_id = str(item.get("item_id") or "").strip()
            if not item_id:
                raise ValueError("work item requires item_id")
            rows.append((
                item_id,
                item.get("pdb_id"),
                item.get("chain_id"),
                int(item.get("sequence_length") or 0),
                float(item.get("best_confidence") or 0.0),
                int(item.get("evidence_count") or 0),
                _bool_or_none(item.get("is_representative")),
                now,
            ))
        if not rows:
            return 0
        with self._get_connection() as conn:
            conn.executemany(
                """
                INSERT INTO work_items (
                    item_id, pdb_id, chain_id, sequence_length, best_confidence,
                    evidence_count, is_representative, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(item_id) DO UPDATE SET
                    pdb_id = excluded.pdb_id,
                    chain_id = excluded.chain_id,
                    sequence_length = excluded.sequence_length,
                    best_confidence = excluded.best_confidence,
                    evidence_count = excluded.evidence_count,
                    is_representative = excluded.is_representative
                """,
                rows,
            )
        return len(rows)

    def get_work_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        items = self.get_work_items([item_id])
        return items[0] if items else None

    def get_work_items(self, item_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch work items, preserving the order of ``item_ids``."""
        if not item_ids:
            return []
        placeholders = ",".join("?" for _ in item_ids)
        with self._get_connection(write=False) as conn:
            rows = conn.execute(
                f"""
                SELECT w.*, COALESCE(cs.is_curated, 0) AS is_curated
                FROM work_items w
                LEFT JOIN curation_status cs ON cs.item_id = w.item_id
                WHERE w.item_id IN ({placeholders})
                """,
                list(item_ids),
            ).fetchall()
        by_id = {row["item_id"]: self._row_to_work_item(row) for row in rows}
        return [by_id[item_id] for item_id in item_ids if item_id in by_id]

    def scan_eligible_items(
        self,
        *,
        now: datetime,
        min_confidence: float,
        min_length: int,
        max_length: int,
        representatives_only: bool,
        limit: int,
    ) -> List[Dict[str, Any]]:
        """Range scan of uncurated, unleased items that pass the domain filters, best first."""
        where, params = self._eligibility_clauses(
            min_confidence=min_confidence,
            min_length=min_length,
            max_length=max_length,
            representatives_only=representatives_only,
        )
        where.append("(cs.is_curated IS NULL OR cs.is_curated = 0)")
        where.append(
            "NOT EXISTS (SELECT 1 FROM leases l WHERE l.item_id = w.item_id AND l.expires_at >= ?)"
        )
        params.append(to_iso(now))
        params.append(int(limit))
        with self._get_connection(write=False) as conn:
            rows = conn.execute(
                f"""
                SELECT w.*, COALESCE(cs.is_curated, 0) AS is_curated
                FROM work_items w
                LEFT JOIN curation_status cs ON cs.item_id = w.item_id
                WHERE {' AND '.join(where)}
                ORDER BY w.best_confidence DESC, w.evidence_count DESC, w.item_id ASC
                LIMIT ?
                """,
                params,
            ).fetchall()
        return [self._row_to_work_item(row) for row in rows]

    def count_curable_items(
        self,
        *,
        min_confidence: float,
        min_length: int,
        max_length: int,
        representatives_only: bool,
    ) -> int:
        where, params = self._eligibility_clauses(
            min_confidence=min_confidence,
            min_length=min_length,
            max_length=max_length,
            representatives_only=representatives_only,
        )
        with self._get_connection(write=False) as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM work_items w WHERE {' AND '.join(where)}",
                params,
            ).fetchone()
        return int(row["n"])

    @staticmethod
    def _eligibility_clauses(
        *,
        min_confidence: float,
        min_length: int,
        max_length: int,
        representatives_only: bool,
    ):
        where = [
            "w.best_confidence > ?",
            "w.evidence_count > 0",
            "w.sequence_length BETWEEN ? AND ?",
        ]
        params: List[Any] = [float(min_confidence), int(min_length), int(max_length)]
        if representatives_only:
            where.append("(w.is_representative = 1 OR w.is_representative IS NULL)")
        return where, params

    @staticmethod
    def _row_to_work_item(row: sqlite3.Row) -> Dict[str, Any]:
        d = dict(row)
        if d.get("is_representative") is not None:
            d["is_representative"] = bool(d["is_representative"])
        d["is_curated"] = bool(d.get("is_curated"))
        return d

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def insert_lease_if_absent(
        self,
        *,
        item_id: str,
        curator_id: str,
        session_id: str,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """Atomically create a lease unless a live one exists.

        A single UPSERT: inserts when no row exists, takes over the row only
        when the existing lease has already expired.
        """
        now_iso = to_iso(now)
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO leases (item_id, curator_id, session_id, acquired_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(item_id) DO UPDATE SET
                    curator_id = excluded.curator_id,
                    session_id = excluded.session_id,
                    acquired_at = excluded.acquired_at,
                    expires_at = excluded.expires_at
                WHERE leases.expires_at < ?
                """,
                (item_id, curator_id, session_id, now_iso, to_iso(expires_at), now_iso),
            )
            return cursor.rowcount == 1

    def extend_leases(self, session_id: str, expires_at: datetime) -> int:
        """Push expiry forward for every lease of a session; never moves it back."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE leases SET expires_at = MAX(expires_at, ?) WHERE session_id = ?",
                (to_iso(expires_at), session_id),
            )
            return cursor.rowcount

    def delete_leases_for_session(self, session_id: str) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM leases WHERE session_id = ?", (session_id,))
            return cursor.rowcount

    def delete_expired_leases(self, now: datetime) -> List[Dict[str, Any]]:
        """Delete every lease with ``expires_at < now``; returns the deleted rows."""
        now_iso = to_iso(now)
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM leases WHERE expires_at < ? ORDER BY item_id",
                (now_iso,),
            ).fetchall()
            if rows:
                conn.execute("DELETE FROM leases WHERE expires_at < ?", (now_iso,))
        return [dict(row) for row in rows]

    def get_lease(self, item_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection(write=False) as conn:
            row = conn.execute("SELECT * FROM leases WHERE item_id = ?", (item_id,)).fetchone()
        return dict(row) if row else None

    def list_leases(self, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._get_connection(write=False) as conn:
            if session_id:
                rows = conn.execute(
                    "SELECT * FROM leases WHERE session_id = ? ORDER BY item_id",
                    (session_id,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM leases ORDER BY item_id").fetchall()
        return [dict(row) for row in rows]

    def count_live_leases(self, now: datetime, session_id: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM leases WHERE expires_at >= ?"
        params: List[Any] = [to_iso(now)]
        if session_id:
            sql += " AND session_id = ?"
            params.append(session_id)
        with self._get_connection(write=False) as conn:
            row = conn.execute(sql, params).fetchone()
        return int(row["n"])

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: Dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO sessions (
                    session_id, curator_id, status, target_size, assigned_item_ids,
                    cursor_index, reviewed_count, checkpoint_blob, notes,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session["session_id"],
                    session["curator_id"],
                    session.get("status", "in_progress"),
                    int(session["target_size"]),
                    json.dumps(list(session.get("assigned_item_ids") or [])),
                    int(session.get("cursor_index", 0)),
                    int(session.get("reviewed_count", 0)),
                    json.dumps(session["checkpoint_blob"]) if session.get("checkpoint_blob") is not None else None,
                    session.get("notes"),
                    session["created_at"],
                    session["updated_at"],
                ),
            )

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection(write=False) as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row) if row else None

    def update_session_if_status(
        self,
        session_id: str,
        expected_statuses: Iterable[str],
        **fields: Any,
    ) -> bool:
        """Compare-and-set: apply ``fields`` only if status is still one of ``expected_statuses``."""
        expected = [str(getattr(s, "value", s)) for s in expected_statuses]
        if not expected:
            raise ValueError("expected_statuses must not be empty")
        sets: List[str] = []
        params: List[Any] = []
        for key, value in fields.items():
            if key not in VALID_SESSION_COLUMNS:
                raise ValueError(f"Invalid session column: {key!r}")
            if key in _SESSION_JSON_FIELDS and value is not None:
                value = json.dumps(value)
            if isinstance(value, datetime):
                value = to_iso(value)
            sets.append(f"{key} = ?")
            params.append(getattr(value, "value", value))
        if not sets:
            raise ValueError("no fields to update")
        placeholders = ",".join("?" for _ in expected)
        params.append(session_id)
        params.extend(expected)
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE sessions SET {', '.join(sets)} WHERE session_id = ? AND status IN ({placeholders})",
                params,
            )
            return cursor.rowcount == 1

    def find_stale_sessions(self, cutoff: datetime) -> List[Dict[str, Any]]:
        with self._get_connection(write=False) as conn:
            rows = conn.execute(
                """
                SELECT * FROM sessions
                WHERE status = 'in_progress' AND updated_at < ?
                ORDER BY updated_at
                """,
                (to_iso(cutoff),),
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def list_sessions(
        self,
        *,
        curator_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """Sessions newest first, each with its decision aggregates."""
        where, params = self._session_filter(curator_id=curator_id, status=status)
        params.append(int(limit))
        with self._get_connection(write=False) as conn:
            rows = conn.execute(
                f"""
                SELECT s.*,
                    COUNT(d.item_id) AS total_decisions,
                    COALESCE(SUM(CASE WHEN d.has_domain = 1 THEN 1 ELSE 0 END), 0) AS domains_found,
                    COALESCE(SUM(CASE WHEN d.is_fragment = 1 THEN 1 ELSE 0 END), 0) AS fragments_found,
                    COALESCE(SUM(CASE WHEN d.flagged_for_review = 1 THEN 1 ELSE 0 END), 0) AS flagged_count,
                    COALESCE(AVG(d.confidence_level), 0) AS avg_confidence,
                    COALESCE(AVG(d.review_time_seconds), 0) AS avg_review_time
                FROM sessions s
                LEFT JOIN decisions d ON d.session_id = s.session_id
                {where}
                GROUP BY s.session_id
                ORDER BY s.created_at DESC, s.session_id
                LIMIT ?
                """,
                params,
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def session_counts(
        self,
        *,
        curator_id: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> Dict[str, int]:
        where, params = self._session_filter(curator_id=curator_id, status=status, since=since)
        with self._get_connection(write=False) as conn:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total_sessions,
                    COALESCE(SUM(CASE WHEN s.status = 'in_progress' THEN 1 ELSE 0 END), 0) AS active_sessions,
                    COALESCE(SUM(CASE WHEN s.status = 'committed' THEN 1 ELSE 0 END), 0) AS committed_sessions,
                    COALESCE(SUM(CASE WHEN s.status = 'abandoned' THEN 1 ELSE 0 END), 0) AS abandoned_sessions,
                    COUNT(DISTINCT s.curator_id) AS unique_curators
                FROM sessions s
                {where}
                """,
                params,
            ).fetchone()
        return {key: int(row[key]) for key in row.keys()}

    @staticmethod
    def _session_filter(
        *,
        curator_id: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
    ):
        clauses: List[str] = []
        params: List[Any] = []
        if curator_id:
            clauses.append("s.curator_id = ?")
            params.append(curator_id)
        if status:
            clauses.append("s.status = ?")
            params.append(str(getattr(status, "value", status)))
        if since is not None:
            clauses.append("s.created_at >= ?")
            params.append(to_iso(since))
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Dict[str, Any]:
        d = dict(row)
        for field in _SESSION_JSON_FIELDS:
            if d.get(field):
                d[field] = json.loads(d[field])
        if d.get("assigned_item_ids") in (None, ""):
            d["assigned_item_ids"] = []
        return d

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def upsert_decision(self, session_id: str, item_id: str, fields: Dict[str, Any], now: datetime) -> None:
        values = []
        for column in _DECISION_COLUMNS:
            value = fields.get(column)
            if column in _DECISION_BOOL_FIELDS:
                value = _bool_or_none(value)
            values.append(value)
        now_iso = to_iso(now)
        columns = ", ".join(_DECISION_COLUMNS)
        placeholders = ", ".join("?" for _ in _DECISION_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _DECISION_COLUMNS)
        with self._get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO decisions (session_id, item_id, {columns}, created_at, updated_at)
                VALUES (?, ?, {placeholders}, ?, ?)
                ON CONFLICT(session_id, item_id) DO UPDATE SET
                    {updates},
                    updated_at = excluded.updated_at
                """,
                [session_id, item_id, *values, now_iso, now_iso],
            )

    def get_decisions(self, session_id: str) -> List[Dict[str, Any]]:
        with self._get_connection(write=False) as conn:
            rows = conn.execute(
                "SELECT * FROM decisions WHERE session_id = ? ORDER BY created_at, item_id",
                (session_id,),
            ).fetchall()
        return [self._row_to_decision(row) for row in rows]

    def decision_stats(
        self,
        *,
        session_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        clauses: List[str] = []
        params: List[Any] = []
        join = ""
        if session_id:
            clauses.append("d.session_id = ?")
            params.append(session_id)
        if since is not None:
            join = "JOIN sessions s ON s.session_id = d.session_id"
            clauses.append("s.created_at >= ?")
            params.append(to_iso(since))
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        with self._get_connection(write=False) as conn:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total_decisions,
                    COALESCE(SUM(CASE WHEN d.has_domain = 1 THEN 1 ELSE 0 END), 0) AS has_domain_count,
                    COALESCE(SUM(CASE WHEN d.is_fragment = 1 THEN 1 ELSE 0 END), 0) AS fragment_count,
                    COALESCE(SUM(CASE WHEN d.is_repeat_protein = 1 THEN 1 ELSE 0 END), 0) AS repeat_count,
                    COALESCE(SUM(CASE WHEN d.flagged_for_review = 1 THEN 1 ELSE 0 END), 0) AS flagged_count,
                    AVG(d.confidence_level) AS avg_confidence,
                    AVG(d.review_time_seconds) AS avg_review_time
                FROM decisions d
                {join}
                {where}
                """,
                params,
            ).fetchone()
        return dict(row)

    @staticmethod
    def _row_to_decision(row: sqlite3.Row) -> Dict[str, Any]:
        d = dict(row)
        for field in _DECISION_BOOL_FIELDS:
            if d.get(field) is not None:
                d[field] = bool(d[field])
        return d

    # ------------------------------------------------------------------
    # Curation status
    # ------------------------------------------------------------------

    def fold_curation_status(
        self,
        item_ids: Sequence[str],
        *,
        curator_id: str,
        session_id: str,
        now: datetime,
    ) -> int:
        """Batch upsert of curated state; increments curation_count per item."""
        if not item_ids:
            return 0
        now_iso = to_iso(now)
        with self._get_connection() as conn:
            conn.executemany(
                """
                INSERT INTO curation_status (
                    item_id, is_curated, last_curator_id, last_curated_at,
                    last_session_id, curation_count
                ) VALUES (?, 1, ?, ?, ?, 1)
                ON CONFLICT(item_id) DO UPDATE SET
                    is_curated = 1,
                    last_curator_id = excluded.last_curator_id,
                    last_curated_at = excluded.last_curated_at,
                    last_session_id = excluded.last_session_id,
                    curation_count = curation_status.curation_count + 1
                """,
                [(item_id, curator_id, now_iso, session_id) for item_id in item_ids],
            )
        return len(item_ids)

    def get_curation_status(self, item_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection(write=False) as conn:
            row = conn.execute(
                "SELECT * FROM curation_status WHERE item_id = ?", (item_id,)
            ).fetchone()
        if row is None:
            return None
        d = dict(row)
        d["is_curated"] = bool(d["is_curated"])
        return d

    def count_curated(
        self,
        *,
        min_confidence: float,
        min_length: int,
        max_length: int,
        representatives_only: bool,
    ) -> int:
        """Curated items that still pass the eligibility filters."""
        where, params = self._eligibility_clauses(
            min_confidence=min_confidence,
            min_length=min_length,
            max_length=max_length,
            representatives_only=representatives_only,
        )
        with self._get_connection(write=False) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM curation_status cs "
                "JOIN work_items w ON w.item_id = cs.item_id "
                f"WHERE cs.is_curated = 1 AND {' AND '.join(where)}",
                params,
            ).fetchone()
        return int(row["n"])
