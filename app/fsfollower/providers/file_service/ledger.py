from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from fsfollower.core.errors import LedgerCorruptionError, LedgerError
from fsfollower.providers.file_service.db import get_conn
from fsfollower.providers.file_service.models import FileEvent, LedgerRecord, SyncStatus

AUDIT_USER = "fsfollower"

logger = logging.getLogger("ledger")


def now_iso():
    return datetime.now().isoformat(timespec="seconds")


class EventLedger:
    """Durable record of which remote events were observed and which were applied.

    Rows are only ever inserted or flipped from FETCHED to ACKED; nothing is deleted.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    @contextmanager
    def _db(self, op: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_conn(self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise LedgerError(f"ledger_open_failed: {op}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LedgerError(f"ledger_{op}_failed: {e}") from e
        finally:
            conn.close()

    def find_last_event_id(self) -> int:
        """Highest event id ever persisted; 0 for an empty ledger."""
        with self._db("find_last_event_id") as conn:
            row = conn.execute("SELECT MAX(event_id) AS event_id FROM file_event_sync").fetchone()
        if row is None or row["event_id"] is None:
            return 0
        return int(row["event_id"])

    def find_fetched_events(self, limit: int = 2) -> list[LedgerRecord]:
        with self._db("find_fetched_events") as conn:
            rows = conn.execute(
                """
                SELECT * FROM file_event_sync
                 WHERE sync_status=?
                 ORDER BY event_id DESC
                 LIMIT ?
                """,
                (SyncStatus.FETCHED.value, limit),
            ).fetchall()
        return [LedgerRecord.model_validate(dict(r)) for r in rows]

    def find_last_fetched_event(self) -> Optional[LedgerRecord]:
        """Return the single un-acked record, if any.

        Events are acked before the next one is persisted, so two FETCHED rows mean
        the ledger was modified behind our back.
        """
        rows = self.find_fetched_events(limit=2)
        if not rows:
            return None
        if len(rows) > 1:
            ids = ", ".join(str(r.event_id) for r in rows)
            raise LedgerCorruptionError(f"multiple_unacked_events: event_ids={ids}")
        return rows[0]

    def get_by_event_id(self, event_id: int) -> Optional[LedgerRecord]:
        with self._db("get_by_event_id") as conn:
            row = conn.execute("SELECT * FROM file_event_sync WHERE event_id=?", (event_id,)).fetchone()
        return LedgerRecord.model_validate(dict(row)) if row else None

    def save_event(self, event: FileEvent) -> bool:
        """Persist ``event`` as FETCHED. A row with the same event id is left untouched."""
        ts = now_iso()
        with self._db("save_event") as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO file_event_sync(
                    event_id,file_key,event_type,sync_status,fetch_time,
                    create_time,create_by,update_time,update_by
                ) VALUES (?,?,?,?,?,?,?,?,?)
                """,
                (
                    event.event_id,
                    event.file_key,
                    event.type or "",
                    SyncStatus.FETCHED.value,
                    ts,
                    ts,
                    AUDIT_USER,
                    ts,
                    AUDIT_USER,
                ),
            )
            inserted = cur.rowcount > 0
        if not inserted:
            logger.info("save_event_duplicate event_id=%s", event.event_id)
        return inserted

    def ack_event(self, record_id: int) -> None:
        ts = now_iso()
        with self._db("ack_event") as conn:
            cur = conn.execute(
                """
                UPDATE file_event_sync
                   SET sync_status=?, ack_time=?, update_time=?, update_by=?
                 WHERE id=?
                """,
                (SyncStatus.ACKED.value, ts, ts, AUDIT_USER, record_id),
            )
            if cur.rowcount < 1:
                raise LedgerError(f"ack_event_missing_record: id={record_id}")

    def list_events(self, limit: int = 50, status: Optional[str] = None) -> list[LedgerRecord]:
        sql = "SELECT * FROM file_event_sync"
        params: list[object] = []
        if status:
            sql += " WHERE sync_status=?"
            params.append(status.upper())
        sql += " ORDER BY event_id DESC LIMIT ?"
        params.append(max(int(limit), 0))
        with self._db("list_events") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [LedgerRecord.model_validate(dict(r)) for r in rows]

    def count_by_status(self) -> dict[str, int]:
        counts = {s.value: 0 for s in SyncStatus}
        with self._db("count_by_status") as conn:
            rows = conn.execute(
                "SELECT sync_status, COUNT(1) AS n FROM file_event_sync GROUP BY sync_status"
            ).fetchall()
        for r in rows:
            counts[r["sync_status"]] = int(r["n"])
        return counts

    def start_run(self, run_type: str) -> int:
        with self._db("start_run") as conn:
            cur = conn.execute(
                "INSERT INTO sync_runs(run_type,status,started_at,summary_json) VALUES (?,?,?,?)",
                (run_type, "running", now_iso(), "{}"),
            )
            return int(cur.lastrowid)

    def finish_run(self, run_id: int, status: str, summary: dict) -> None:
        with self._db("finish_run") as conn:
            conn.execute(
                "UPDATE sync_runs SET status=?, finished_at=?, summary_json=? WHERE id=?",
                (status, now_iso(), json.dumps(summary, ensure_ascii=False), run_id),
            )

    def recent_runs(self, limit: int = 20) -> list[dict]:
        with self._db("recent_runs") as conn:
            rows = conn.execute("SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        out: list[dict] = []
        for r in rows:
            item = dict(r)
            try:
                item["summary"] = json.loads(item.pop("summary_json") or "{}")
            except ValueError:
                item["summary"] = {}
            out.append(item)
        return out
