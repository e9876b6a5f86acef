import gzip
import json
import sqlite3

from pegbridge.ledger_store import claim, db, record
from pegbridge.ops.ledger_snapshot import main

OUTCOME = {
    "status": "success",
    "tx_hash": "0x" + "ab" * 32,
    "token_sent": "200",
    "rwa_value": 100,
    "timestamp": 1_700_000_000_000,
}


def test_snapshot_exports_settled_and_flags_stale_claims(db_path, tmp_path):
    con = db(db_path)
    try:
        record(con, "o-1", OUTCOME)
        record(con, "o-2", dict(OUTCOME, tx_hash="0x" + "cd" * 32))
        claim(con, "stuck")
    finally:
        con.close()

    out = tmp_path / "snaps"
    rc = main(["--db", db_path, "--out", str(out), "--stale-sec", "-1"])
    assert rc == 0

    manifest = json.loads((out / "manifest.json").read_text())
    assert manifest["settled_count"] == 2
    assert [c["order_id"] for c in manifest["stale_pending"]] == ["stuck"]
    assert manifest["source_checks"]["integrity_check_ok"] is True

    lines = (out / manifest["export_file"]).read_text().splitlines()
    assert sorted(json.loads(line)["order_id"] for line in lines) == ["o-1", "o-2"]

    # the gzipped snapshot is a usable sqlite file
    restored = tmp_path / "restored.db"
    with gzip.open(out / manifest["snapshot_file"], "rb") as f:
        restored.write_bytes(f.read())
    rcon = sqlite3.connect(restored.as_posix())
    try:
        assert rcon.execute("SELECT COUNT(*) FROM settlements").fetchone()[0] == 3
    finally:
        rcon.close()
    assert (out / "LATEST").read_text().strip() == manifest["snapshot_file"]


def test_missing_db(tmp_path):
    assert main(["--db", str(tmp_path / "nope.db"), "--out", str(tmp_path / "o")]) == 2


def test_missing_out(db_path, monkeypatch):
    monkeypatch.delenv("LEDGER_SNAPSHOT_DIR", raising=False)
    assert main(["--db", db_path]) == 2
