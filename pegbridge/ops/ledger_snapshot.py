#!/usr/bin/env python3
"""
Snapshot the settlement ledger.

Writes into --out:
    ledger_snapshot_<stamp>.db.gz      consistent sqlite backup, gzipped
    ledger_export_<stamp>.jsonl        one settled order per line
    manifest.json / LATEST             checks, hashes, counts, stuck claims

Pending rows older than --stale-sec are listed in the manifest: they are
orders whose transfer may have been broadcast without the outcome being
recorded, and need a manual look on a block explorer.
"""
from __future__ import annotations

import argparse
import gzip
import hashlib
import json
import os
import shutil
import sqlite3
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from ..ledger_store import STATE_PENDING, STATE_SUCCESS, fetch_settlements

EXPORT_PAGE = 1000


def sha256_file(p: Path) -> str:
    h = hashlib.sha256()
    with open(p, "rb") as f:
        while True:
            b = f.read(1024 * 1024)
            if not b:
                break
            h.update(b)
    return h.hexdigest()


def run_sqlite_checks(db_path: Path) -> Dict[str, Any]:
    uri = f"file:{db_path.as_posix()}?mode=ro"
    con = sqlite3.connect(uri, uri=True, timeout=5)
    try:
        qc = con.execute("PRAGMA quick_check;").fetchall()
        ic = con.execute("PRAGMA integrity_check;").fetchall()
        return {
            "quick_check_ok": all(r[0] == "ok" for r in qc),
            "integrity_check_ok": all(r[0] == "ok" for r in ic),
            "quick_check": [r[0] for r in qc[:10]],
            "integrity_check": [r[0] for r in ic[:10]],
            "journal_mode": con.execute("PRAGMA journal_mode;").fetchone()[0],
        }
    finally:
        con.close()


def make_consistent_snapshot(src_db: Path, dst_db: Path) -> None:
    """Copy through the sqlite backup API so a concurrent writer can't tear the file."""
    dst_db.parent.mkdir(parents=True, exist_ok=True)
    src = sqlite3.connect(src_db.as_posix(), timeout=30)
    try:
        dst = sqlite3.connect(dst_db.as_posix(), timeout=30)
        try:
            src.backup(dst, pages=2000)
            # self-contained file, no WAL sidecars
            dst.execute("PRAGMA journal_mode=DELETE;")
            dst.commit()
        finally:
            dst.close()
    finally:
        src.close()


def gzip_compress(src: Path, dst: Path) -> None:
    with open(src, "rb") as f_in, gzip.open(dst, "wb", compresslevel=9) as f_out:
        shutil.copyfileobj(f_in, f_out)


def export_settled(con: sqlite3.Connection, dst: Path) -> int:
    n = 0
    offset = 0
    with open(dst, "w", encoding="utf-8") as f:
        while True:
            page = fetch_settlements(con, state=STATE_SUCCESS, limit=EXPORT_PAGE, offset=offset)
            for row in page:
                f.write(json.dumps(row, sort_keys=True) + "\n")
            n += len(page)
            if len(page) < EXPORT_PAGE:
                return n
            offset += EXPORT_PAGE


def stale_claims(con: sqlite3.Connection, older_than: int) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    offset = 0
    while True:
        page = fetch_settlements(con, state=STATE_PENDING, limit=EXPORT_PAGE, offset=offset)
        out.extend(
            {"order_id": r["order_id"], "claimed_at": r["claimed_at"]}
            for r in page
            if r["claimed_at"] <= older_than
        )
        if len(page) < EXPORT_PAGE:
            return out
        offset += EXPORT_PAGE


def prune(out_dir: Path, pattern: str, keep: int) -> None:
    files = sorted(out_dir.glob(pattern), key=lambda p: p.name)
    for p in files[: max(0, len(files) - keep)]:
        try:
            p.unlink()
        except OSError as e:
            print(f"WARNING: could not prune {p}: {e}", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--env", default=None)
    pre_args, _ = pre.parse_known_args(argv)
    if pre_args.env:
        env_path = Path(os.path.expanduser(pre_args.env)).resolve()
        if not env_path.exists():
            print(f"ERROR: env file not found: {env_path}", file=sys.stderr)
            return 2
        load_dotenv(env_path)
    else:
        load_dotenv()

    ap = argparse.ArgumentParser(description="Snapshot and export the settlement ledger")
    ap.add_argument("--env", default=pre_args.env, help="Optional env file (default: ./.env if present)")
    ap.add_argument("--db", default=os.environ.get("BRIDGE_DB", "bridge.db"), help="Ledger sqlite path (or BRIDGE_DB)")
    ap.add_argument("--out", default=os.environ.get("LEDGER_SNAPSHOT_DIR"), help="Output dir (or LEDGER_SNAPSHOT_DIR)")
    ap.add_argument("--keep", type=int, default=int(os.environ.get("KEEP_SNAPSHOTS", "30")))
    ap.add_argument("--stale-sec", type=int, default=300, help="Pending claims older than this are flagged")
    args = ap.parse_args(argv)

    if not args.out:
        print("ERROR: missing --out (or LEDGER_SNAPSHOT_DIR)", file=sys.stderr)
        return 2

    db_path = Path(os.path.expanduser(args.db)).resolve()
    out_dir = Path(os.path.expanduser(args.out)).resolve()
    if not db_path.exists():
        print(f"ERROR: DB not found: {db_path}", file=sys.stderr)
        return 2
    out_dir.mkdir(parents=True, exist_ok=True)

    ts = int(time.time())
    stamp = time.strftime("%Y%m%d-%H%M%S", time.gmtime(ts))
    snap_db = out_dir / f"ledger_snapshot_{stamp}.db"
    snap_gz = out_dir / f"{snap_db.name}.gz"
    export_path = out_dir / f"ledger_export_{stamp}.jsonl"

    checks = run_sqlite_checks(db_path)
    if not checks["quick_check_ok"] or not checks["integrity_check_ok"]:
        print("ERROR: DB integrity checks failed. Will not snapshot.", file=sys.stderr)
        print(json.dumps(checks, indent=2), file=sys.stderr)
        return 3

    make_consistent_snapshot(db_path, snap_db)
    snap_checks = run_sqlite_checks(snap_db)
    if not snap_checks["quick_check_ok"] or not snap_checks["integrity_check_ok"]:
        print("ERROR: SNAPSHOT integrity checks failed.", file=sys.stderr)
        snap_db.unlink()
        return 3

    con = sqlite3.connect(snap_db.as_posix())
    con.row_factory = sqlite3.Row
    try:
        settled = export_settled(con, export_path)
        stuck = stale_claims(con, ts - int(args.stale_sec))
    finally:
        con.close()

    gzip_compress(snap_db, snap_gz)
    snap_db.unlink()

    manifest = {
        "created_at_unix": ts,
        "created_at_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts)),
        "source_db_path": str(db_path),
        "snapshot_file": snap_gz.name,
        "snapshot_sha256": sha256_file(snap_gz),
        "export_file": export_path.name,
        "export_sha256": sha256_file(export_path),
        "settled_count": settled,
        "stale_pending": stuck,
        "source_checks": checks,
    }
    (out_dir / "manifest.json").write_text(json.dumps(manifest, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    (out_dir / "LATEST").write_text(snap_gz.name + "\n", encoding="utf-8")

    prune(out_dir, "ledger_snapshot_*.db.gz", args.keep)
    prune(out_dir, "ledger_export_*.jsonl", args.keep)

    if stuck:
        print(f"WARNING: {len(stuck)} stale pending claim(s), see manifest.json", file=sys.stderr)
    print(f"Snapshot OK: {snap_gz.name} settled={settled}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
