import sqlite3, pathlib
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from transfer_monitor import config
from transfer_monitor.helpers import iso_minutes_ago
from transfer_monitor.models import Transfer

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")

COLUMNS = (
    "time", "chain", "block_number", "block_hash", "event_index", "tx_hash", "token",
    "from", "from_label", "to", "to_label", "token_symbol", "token_decimals",
    "amount_raw", "amount_text", "amount_tokens",
)

def db(path: Optional[str] = None) -> sqlite3.Connection:
    path = path or config.DB_PATH
    if path != ":memory:":
        pathlib.Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    # a commit must be on disk before the checkpoint file moves past it
    conn.execute("PRAGMA synchronous=FULL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA busy_timeout=5000;")
    return conn

def ensure_schema(conn: sqlite3.Connection):
    conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))

def row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {k: row[k] for k in row.keys()}

def _params(t: Transfer) -> tuple:
    return (
        t.time, t.chain, t.block_number, t.block_hash, t.event_index, t.tx_hash, t.token,
        t.from_addr, t.from_label, t.to_addr, t.to_label, t.token_symbol, t.token_decimals,
        t.amount_raw, t.amount_text, t.amount_tokens,
    )

# ---------- writes ----------
def append_transfers(conn: sqlite3.Connection, transfers: Iterable[Transfer]) -> int:
    """
    Insert a batch in one transaction; rows whose (block_hash, event_index)
    already exists are dropped. Returns the number of rows actually inserted.
    Any error rolls the whole batch back and propagates.
    """
    rows = [_params(t) for t in transfers]
    if not rows:
        return 0
    cols = ",".join(f'"{c}"' for c in COLUMNS)
    qmarks = ",".join(["?"] * len(COLUMNS))
    before = conn.total_changes
    conn.execute("BEGIN IMMEDIATE;")
    try:
        conn.executemany(f"INSERT OR IGNORE INTO transfers ({cols}) VALUES ({qmarks})", rows)
        conn.execute("COMMIT;")
    except BaseException:
        conn.execute("ROLLBACK;")
        raise
    return conn.total_changes - before

def clear_transfers(conn: sqlite3.Connection) -> int:
    n = conn.execute("DELETE FROM transfers;").rowcount
    logger.warning(f"[db] cleared {n} transfers")
    return n

# ---------- reads ----------
def count_transfers(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(1) FROM transfers").fetchone()[0]

def _like_escape(s: str) -> str:
    # literal substring: % and _ are not wildcards
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

def _where(min_amount: float = 0, address_q: str = "", since_minutes: float = 0,
           symbol: str = "") -> Tuple[str, Dict[str, Any]]:
    where, params = [], {}
    if min_amount and min_amount > 0:
        where.append("amount_tokens >= :min_amount")
        params["min_amount"] = float(min_amount)
    if address_q:
        where.append("(" + " OR ".join(
            f"lower({col}) LIKE :q ESCAPE '\\'"
            for col in ('"from"', '"to"', "from_label", "to_label")
        ) + ")")
        params["q"] = f"%{_like_escape(address_q.lower())}%"
    if since_minutes and since_minutes > 0:
        where.append("time >= :since_iso")
        params["since_iso"] = iso_minutes_ago(since_minutes)
    if symbol:
        where.append("token_symbol = :sym")
        params["sym"] = symbol
    return ("WHERE " + " AND ".join(where)) if where else "", params

def query_transfers(conn: sqlite3.Connection, *, limit: int = 50, offset: int = 0,
                    min_amount: float = 0, address_q: str = "", since_minutes: float = 0,
                    symbol: str = "") -> Tuple[List[Dict[str, Any]], int]:
    """Newest first; the total ignores limit/offset."""
    where_sql, params = _where(min_amount, address_q, since_minutes, symbol)
    rows = conn.execute(f"""
        SELECT * FROM transfers
        {where_sql}
        ORDER BY time DESC, block_number DESC, event_index DESC
        LIMIT :limit OFFSET :offset
    """, {**params, "limit": int(limit), "offset": int(offset)}).fetchall()
    total = conn.execute(f"SELECT COUNT(1) FROM transfers {where_sql}", params).fetchone()[0]
    return [row_to_dict(r) for r in rows], total

def scan_transfers(conn: sqlite3.Connection, *, since_minutes: float = 0, symbol: str = "",
                   scan_limit: int = 100000) -> List[sqlite3.Row]:
    where_sql, params = _where(since_minutes=since_minutes, symbol=symbol)
    return conn.execute(f"""
        SELECT "from", "to", amount_tokens FROM transfers
        {where_sql}
        ORDER BY time DESC
        LIMIT :scan_limit
    """, {**params, "scan_limit": int(scan_limit)}).fetchall()
