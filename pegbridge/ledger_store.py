# ledger_store.py
"""
SQLite idempotency ledger: one row per order_id.

Row lifecycle:
    (absent) --claim--> pending --record--> success
                        pending --release--> (absent)

A `success` row is never updated or deleted. `claim` is an INSERT on the
primary key, so of two concurrent requests for a new order exactly one wins.
"""
import json
import sqlite3
import time
from typing import Any, Dict, List, Optional

from .errors import AlreadyExists

STATE_PENDING = "pending"
STATE_SUCCESS = "success"


def now_unix() -> int:
    return int(time.time())


def db(db_path: str) -> sqlite3.Connection:
    con = sqlite3.connect(db_path, timeout=30, isolation_level=None)  # autocommit
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA journal_mode=WAL;")
    con.execute("PRAGMA synchronous=NORMAL;")
    con.execute("PRAGMA busy_timeout=30000;")
    return con


def ensure_tables(con: sqlite3.Connection) -> None:
    """
    - order_id    : caller-supplied idempotency key
    - state       : 'pending' | 'success'
    - claimed_at  : unix time the pipeline took the order
    - settled_at  : unix time the outcome was recorded
    - tx_hash     : transfer transaction hash (success only)
    - outcome     : settlement outcome JSON, returned verbatim on lookup
    """
    con.execute("""
    CREATE TABLE IF NOT EXISTS settlements (
      order_id TEXT PRIMARY KEY,
      state TEXT NOT NULL,
      claimed_at INTEGER NOT NULL,
      settled_at INTEGER,
      tx_hash TEXT,
      outcome TEXT
    );
    """)
    con.execute("CREATE INDEX IF NOT EXISTS idx_settlements_state ON settlements(state, settled_at);")


def claim_state(con: sqlite3.Connection, order_id: str) -> Optional[str]:
    row = con.execute("SELECT state FROM settlements WHERE order_id=?", (order_id,)).fetchone()
    return str(row["state"]) if row else None


def lookup(con: sqlite3.Connection, order_id: str) -> Optional[Dict[str, Any]]:
    """Return the stored outcome of a settled order, or None."""
    row = con.execute(
        "SELECT outcome FROM settlements WHERE order_id=? AND state=?",
        (order_id, STATE_SUCCESS),
    ).fetchone()
    if not row or row["outcome"] is None:
        return None
    return json.loads(row["outcome"])


def claim(con: sqlite3.Connection, order_id: str) -> bool:
    """Insert a pending row for order_id. False if the order already has a row."""
    try:
        con.execute(
            "INSERT INTO settlements(order_id, state, claimed_at) VALUES(?,?,?)",
            (order_id, STATE_PENDING, now_unix()),
        )
        return True
    except sqlite3.IntegrityError:
        return False


def release(con: sqlite3.Connection, order_id: str) -> bool:
    """Drop a pending claim so the same order can be retried. Never touches success rows."""
    cur = con.execute(
        "DELETE FROM settlements WHERE order_id=? AND state=?",
        (order_id, STATE_PENDING),
    )
    return cur.rowcount > 0


def record(con: sqlite3.Connection, order_id: str, outcome: Dict[str, Any]) -> None:
    """Persist the final outcome for order_id.

    Converts a pending claim (or inserts a fresh row). Raises AlreadyExists if
    the order is already settled; the stored outcome is left untouched.
    """
    ts = now_unix()
    payload = json.dumps(outcome, sort_keys=True)
    tx_hash = outcome.get("tx_hash")

    con.execute("BEGIN IMMEDIATE;")
    try:
        row = con.execute("SELECT state FROM settlements WHERE order_id=?", (order_id,)).fetchone()
        if row and row["state"] == STATE_SUCCESS:
            con.execute("ROLLBACK;")
            raise AlreadyExists(f"order {order_id} already settled")

        if row:
            con.execute(
                """
                UPDATE settlements
                SET state=?, settled_at=?, tx_hash=?, outcome=?
                WHERE order_id=? AND state=?
                """,
                (STATE_SUCCESS, ts, tx_hash, payload, order_id, STATE_PENDING),
            )
        else:
            con.execute(
                """
                INSERT INTO settlements(order_id, state, claimed_at, settled_at, tx_hash, outcome)
                VALUES(?,?,?,?,?,?)
                """,
                (order_id, STATE_SUCCESS, ts, ts, tx_hash, payload),
            )
        con.execute("COMMIT;")
    except AlreadyExists:
        raise
    except Exception:
        con.execute("ROLLBACK;")
        raise


def fetch_settlements(
    con: sqlite3.Connection,
    state: str = STATE_SUCCESS,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    limit = int(limit)
    offset = int(offset)
    if limit < 1:
        limit = 1
    if limit > 5000:
        limit = 5000
    if offset < 0:
        offset = 0

    rows = con.execute(
        """
        SELECT order_id, state, claimed_at, settled_at, tx_hash, outcome
        FROM settlements
        WHERE state = ?
        ORDER BY claimed_at ASC, order_id ASC
        LIMIT ? OFFSET ?
        """,
        (state, limit, offset),
    ).fetchall()

    out: List[Dict[str, Any]] = []
    for r in rows:
        out.append(
            dict(
                order_id=str(r["order_id"]),
                state=str(r["state"]),
                claimed_at=int(r["claimed_at"]),
                settled_at=int(r["settled_at"]) if r["settled_at"] is not None else None,
                tx_hash=str(r["tx_hash"]) if r["tx_hash"] is not None else None,
                outcome=json.loads(r["outcome"]) if r["outcome"] else None,
            )
        )
    return out
