import sqlite3
import json
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .constants import DB_PATH
from .time import DEFAULT_TIME_PROVIDER as TIME

sqlite3.register_adapter(datetime, lambda dt: dt.isoformat())
sqlite3.register_converter(
    "TIMESTAMP", lambda s: datetime.fromisoformat(s.decode())
)


def connect(db_path: Optional[Path] = None) -> sqlite3.Connection:
    return sqlite3.connect(
        db_path or DB_PATH, timeout=10.0, detect_types=sqlite3.PARSE_DECLTYPES
    )


def init_db(db_path: Optional[Path] = None) -> None:
    path = Path(db_path or DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS tweak_snapshots (
            tweak_id TEXT PRIMARY KEY,
            applied_option_index INTEGER NOT NULL,
            applied_option_label TEXT NOT NULL,
            created_at TIMESTAMP NOT NULL,
            os_version INTEGER NOT NULL,
            payload_json TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS tweak_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tweak_id TEXT NOT NULL,
            operation TEXT NOT NULL,
            option_index INTEGER,
            status TEXT NOT NULL,
            started_at TIMESTAMP NOT NULL,
            finished_at TIMESTAMP,
            error_message TEXT,
            pre_state_json TEXT
        )
    """)

    conn.commit()
    conn.close()


# --- snapshots -------------------------------------------------------------

def save_snapshot(row: Dict[str, Any], db_path: Optional[Path] = None) -> None:
    conn = connect(db_path)
    try:
        conn.execute("""
            INSERT OR REPLACE INTO tweak_snapshots
                (tweak_id, applied_option_index, applied_option_label,
                 created_at, os_version, payload_json)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            row["tweak_id"],
            row["applied_option_index"],
            row["applied_option_label"],
            row["created_at"],
            row["os_version"],
            json.dumps(row["resources"]),
        ))
        conn.commit()
    finally:
        conn.close()


def load_snapshot(tweak_id: str, db_path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    conn = connect(db_path)
    try:
        cursor = conn.execute("""
            SELECT tweak_id, applied_option_index, applied_option_label,
                   created_at, os_version, payload_json
            FROM tweak_snapshots
            WHERE tweak_id = ?
        """, (tweak_id,))
        row = cursor.fetchone()
    finally:
        conn.close()

    if not row:
        return None

    return {
        "tweak_id": row[0],
        "applied_option_index": row[1],
        "applied_option_label": row[2],
        "created_at": row[3],
        "os_version": row[4],
        "resources": json.loads(row[5]),
    }


def update_snapshot_option(
    tweak_id: str, index: int, label: str, db_path: Optional[Path] = None
) -> bool:
    conn = connect(db_path)
    try:
        cursor = conn.execute("""
            UPDATE tweak_snapshots
            SET applied_option_index = ?, applied_option_label = ?
            WHERE tweak_id = ?
        """, (index, label, tweak_id))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def rekey_snapshot(old_id: str, new_id: str, db_path: Optional[Path] = None) -> None:
    conn = connect(db_path)
    try:
        conn.execute(
            "UPDATE tweak_snapshots SET tweak_id = ? WHERE tweak_id = ?",
            (new_id, old_id)
        )
        conn.commit()
    finally:
        conn.close()


def delete_snapshot(tweak_id: str, db_path: Optional[Path] = None) -> bool:
    conn = connect(db_path)
    try:
        cursor = conn.execute(
            "DELETE FROM tweak_snapshots WHERE tweak_id = ?", (tweak_id,)
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def list_snapshot_ids(db_path: Optional[Path] = None) -> List[str]:
    conn = connect(db_path)
    try:
        cursor = conn.execute("SELECT tweak_id FROM tweak_snapshots ORDER BY tweak_id")
        return [r[0] for r in cursor.fetchall()]
    finally:
        conn.close()


# --- journal ---------------------------------------------------------------

def create_history_entry(
    tweak_id: str,
    operation: str,
    option_index: Optional[int] = None,
    pre_state: Optional[List[Dict[str, Any]]] = None,
    db_path: Optional[Path] = None,
) -> int:
    conn = connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO tweak_history
                (tweak_id, operation, option_index, status, started_at, pre_state_json)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            tweak_id,
            operation,
            option_index,
            "pending",
            TIME.now(),
            json.dumps(pre_state) if pre_state is not None else None,
        ))
        history_id = cursor.lastrowid
        conn.commit()
    finally:
        conn.close()

    return history_id


def _history_row(row: Sequence[Any]) -> Dict[str, Any]:
    return {
        "id": row[0],
        "tweak_id": row[1],
        "operation": row[2],
        "option_index": row[3],
        "status": row[4],
        "started_at": row[5],
        "finished_at": row[6],
        "error_message": row[7],
        "pre_state": json.loads(row[8]) if row[8] else None,
    }


_HISTORY_COLUMNS = """
    id, tweak_id, operation, option_index, status,
    started_at, finished_at, error_message, pre_state_json
"""


def get_history_entry(history_id: int, db_path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    conn = connect(db_path)
    try:
        cursor = conn.execute(
            f"SELECT {_HISTORY_COLUMNS} FROM tweak_history WHERE id = ?",
            (history_id,)
        )
        row = cursor.fetchone()
    finally:
        conn.close()
    return _history_row(row) if row else None


def get_history_by_tweak_id(tweak_id: str, db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    conn = connect(db_path)
    try:
        cursor = conn.execute(
            f"SELECT {_HISTORY_COLUMNS} FROM tweak_history "
            "WHERE tweak_id = ? ORDER BY id ASC",
            (tweak_id,)
        )
        rows = cursor.fetchall()
    finally:
        conn.close()
    return [_history_row(r) for r in rows]


def get_entries_with_status(statuses: Sequence[str], db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    placeholders = ", ".join("?" for _ in statuses)
    conn = connect(db_path)
    try:
        cursor = conn.execute(
            f"SELECT {_HISTORY_COLUMNS} FROM tweak_history "
            f"WHERE status IN ({placeholders}) ORDER BY id ASC",
            tuple(statuses)
        )
        rows = cursor.fetchall()
    finally:
        conn.close()
    return [_history_row(r) for r in rows]
