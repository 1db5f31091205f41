import os, sqlite3, time, hashlib, json
from typing import Optional, Dict, Any, List, Sequence

from .debug_util import dbg

DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "bundles.db")

_SCHEMA = [
    "CREATE TABLE IF NOT EXISTS bundles (bundle_id TEXT PRIMARY KEY, source_hash TEXT NOT NULL, path TEXT NOT NULL, "
    "kind TEXT NOT NULL, family TEXT, node_count INTEGER DEFAULT 0, timestamps INTEGER DEFAULT 0, "
    "metrics INTEGER DEFAULT 0, start_ts TEXT, end_ts TEXT, created_at INTEGER, payload TEXT NOT NULL, "
    "UNIQUE(kind, source_hash))",
    # one row (id=1) pointing at the active bundle; bundle_id NULL when nothing is active
    "CREATE TABLE IF NOT EXISTS active_bundle (id INTEGER PRIMARY KEY CHECK (id=1), bundle_id TEXT, activated_at INTEGER)",
]

# listing never ships the payload
_SUMMARY_COLS = "bundle_id, source_hash, path, kind, family, node_count, timestamps, metrics, start_ts, end_ts, created_at"
_NEWEST_FIRST = "ORDER BY created_at DESC, rowid DESC"

_connection: Optional[sqlite3.Connection] = None
_db_path: Optional[str] = None
_clean_start_done = False


def db_path() -> str:
    return os.environ.get("DIAG_SQLITE_PATH", DEFAULT_DB_PATH)


def _maybe_clean_start(path: str):
    """DIAG_CLEAN_START=1 deletes the sqlite file before the first open of the process."""
    global _clean_start_done
    if _clean_start_done:
        return
    _clean_start_done = True
    if os.environ.get('DIAG_CLEAN_START') == '1' and os.path.exists(path):
        os.remove(path)
        dbg(f'bundle_store clean_start removed={path}')


def _get_conn() -> sqlite3.Connection:
    """Shared connection; reopened when DIAG_SQLITE_PATH changes."""
    global _connection, _db_path
    path = db_path()
    if _connection is not None and _db_path != path:
        reset_connection()
    if _connection is None:
        _maybe_clean_start(path)
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        conn = sqlite3.connect(path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        for stmt in _SCHEMA:
            conn.execute(stmt)
        conn.commit()
        _connection, _db_path = conn, path
        dbg(f'bundle_store open path={path}')
    return _connection


def reset_connection():
    global _connection, _db_path
    if _connection is not None:
        _connection.close()
    _connection = None
    _db_path = None


def _one(sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
    return _get_conn().execute(sql, params).fetchone()


def _all(sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
    return _get_conn().execute(sql, params).fetchall()


def _write(*statements) -> int:
    """Run (sql, params) pairs in one commit; returns rows touched by the first."""
    conn = _get_conn()
    touched = 0
    for n, (sql, params) in enumerate(statements):
        cur = conn.execute(sql, params)
        if n == 0:
            touched = cur.rowcount
    conn.commit()
    return touched


def source_hash(path: str) -> str:
    """Change detector for a file or an extracted collection directory.

    Files: name, size, mtime and the first MiB of content. Directories: the
    walked listing (relative path, size, mtime) so an unchanged collection
    reuses its bundle.
    """
    h = hashlib.sha256()
    if os.path.isdir(path):
        h.update(f"DIR:{os.path.basename(os.path.normpath(path))}".encode())
        for dirpath, dirnames, filenames in os.walk(path):
            dirnames.sort()
            for name in sorted(filenames):
                full = os.path.join(dirpath, name)
                try:
                    fst = os.stat(full)
                except FileNotFoundError:
                    continue
                h.update(f"{os.path.relpath(full, path)}:{fst.st_size}:{int(fst.st_mtime)}".encode())
        return h.hexdigest()
    st = os.stat(path)
    h.update(f"FILE:{os.path.basename(path)}:{st.st_size}:{int(st.st_mtime)}".encode())
    with open(path, 'rb') as f:
        h.update(f.read(1024*1024))
    return h.hexdigest()


def text_hash(content: str) -> str:
    return hashlib.sha256(content.encode('utf-8', errors='ignore')).hexdigest()


def _as_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    return dict(row) if row else None


def get_bundle_by_hash(kind: str, digest: str) -> Optional[Dict[str, Any]]:
    return _as_dict(_one(f"SELECT {_SUMMARY_COLS} FROM bundles WHERE kind=? AND source_hash=?", (kind, digest)))


def insert_bundle(record: Dict[str, Any]):
    cols = list(record)
    sql = f"INSERT INTO bundles ({','.join(cols)}) VALUES ({','.join(':' + c for c in cols)})"
    _write((sql, record))


def get_bundle(bundle_id: str) -> Optional[Dict[str, Any]]:
    return _as_dict(_one(f"SELECT {_SUMMARY_COLS} FROM bundles WHERE bundle_id=?", (bundle_id,)))


def get_payload(bundle_id: str) -> Optional[Dict[str, Any]]:
    """Stored bundle JSON (TimeSeriesBundle.to_json) decoded back to a dict."""
    row = _one("SELECT payload FROM bundles WHERE bundle_id=?", (bundle_id,))
    return json.loads(row['payload']) if row else None


def list_all_bundles() -> List[Dict[str, Any]]:
    return [dict(r) for r in _all(f"SELECT {_SUMMARY_COLS} FROM bundles {_NEWEST_FIRST}")]


def delete_bundle(bundle_id: str) -> bool:
    removed = _write(
        ("DELETE FROM bundles WHERE bundle_id=?", (bundle_id,)),
        ("UPDATE active_bundle SET bundle_id=NULL WHERE id=1 AND bundle_id=?", (bundle_id,)),
    )
    return removed > 0


def delete_all_bundles() -> int:
    return _write(("DELETE FROM bundles", ()), ("UPDATE active_bundle SET bundle_id=NULL WHERE id=1", ()))


def set_global_active(bundle_id: str):
    """Point the single active slot at bundle_id."""
    _write(("INSERT INTO active_bundle(id, bundle_id, activated_at) VALUES(1, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET bundle_id=excluded.bundle_id, activated_at=excluded.activated_at",
            (bundle_id, int(time.time()*1000))))


def get_global_active() -> Optional[Dict[str, Any]]:
    row = _one("SELECT bundle_id, activated_at FROM active_bundle WHERE id=1 AND bundle_id IS NOT NULL")
    return _as_dict(row)


def unload_global_active() -> Optional[str]:
    """Clear the active slot; returns the bundle id that was active, if any."""
    active = get_global_active()
    if active is None:
        return None
    _write(("UPDATE active_bundle SET bundle_id=NULL WHERE id=1", ()))
    return active['bundle_id']


def promote_latest_bundle() -> Optional[str]:
    """Activate the most recently created bundle when nothing is active."""
    if get_global_active() is not None:
        return None
    row = _one(f"SELECT bundle_id FROM bundles {_NEWEST_FIRST} LIMIT 1")
    if row is None:
        return None
    set_global_active(row['bundle_id'])
    dbg(f'bundle_store promoted bundle={row["bundle_id"]}')
    return row['bundle_id']
