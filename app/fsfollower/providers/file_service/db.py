import sqlite3
from pathlib import Path

from fsfollower.core.errors import LedgerError


def get_conn(db_path: str):
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str):
    try:
        conn = get_conn(db_path)
    except (sqlite3.Error, OSError) as e:
        raise LedgerError(f"ledger_open_failed: {db_path}: {e}") from e

    try:
        cur = conn.cursor()

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS file_event_sync (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              event_id INTEGER NOT NULL DEFAULT 0,
              file_key VARCHAR(64) NOT NULL,
              event_type VARCHAR(25) NOT NULL,
              sync_status VARCHAR(10) NOT NULL DEFAULT 'FETCHED',
              fetch_time DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
              ack_time DATETIME NULL DEFAULT NULL,
              create_time DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
              create_by VARCHAR(255) NOT NULL DEFAULT '',
              update_time DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
              update_by VARCHAR(255) NOT NULL DEFAULT '',
              is_del INTEGER NOT NULL DEFAULT 0
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              run_type TEXT,
              status TEXT,
              started_at DATETIME DEFAULT CURRENT_TIMESTAMP,
              finished_at DATETIME,
              summary_json TEXT
            )
            """
        )

        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS event_id_uk ON file_event_sync(event_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_file_event_sync_status ON file_event_sync(sync_status, event_id)")

        conn.commit()
    except sqlite3.Error as e:
        raise LedgerError(f"ledger_init_failed: {db_path}: {e}") from e
    finally:
        conn.close()
