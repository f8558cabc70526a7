import sqlite3
from typing import Any, Dict

from pydantic import BaseModel, Field

from transfer_monitor import config
from transfer_monitor.db import query_transfers, scan_transfers

# --------- input models ----------
class ListIn(BaseModel):
    limit: int = Field(100, ge=1, le=500)
    page: int = Field(1, ge=1)
    min_amount: float = Field(0, ge=0)
    address_q: str = ""
    since_minutes: float = Field(0, ge=0)
    symbol: str = ""

class StatsIn(BaseModel):
    since_minutes: float = Field(0, ge=0)
    symbol: str = ""

# --------- queries ----------
def list_transfers(conn: sqlite3.Connection, args: ListIn) -> Dict[str, Any]:
    """One page of stored transfers, newest first, with the total match count."""
    offset = (args.page - 1) * args.limit
    rows, count = query_transfers(
        conn,
        limit=args.limit,
        offset=offset,
        min_amount=args.min_amount,
        address_q=args.address_q.strip(),
        since_minutes=args.since_minutes,
        symbol=args.symbol.strip(),
    )
    return {"count": count, "page": args.page, "page_size": args.limit, "rows": rows}

def transfer_stats(conn: sqlite3.Connection, args: StatsIn, watchlist,
                   scan_limit: int = config.STATS_SCAN_LIMIT) -> Dict[str, Any]:
    """
    Flow totals for watchlisted addresses over the newest `scan_limit` rows:
    inflow where `to` is watchlisted, outflow where `from` is.
    """
    rows = scan_transfers(conn, since_minutes=args.since_minutes,
                          symbol=args.symbol.strip(), scan_limit=scan_limit)
    total_in = total_out = 0.0
    max_amount = 0.0
    for r in rows:
        amt = float(r["amount_tokens"] or 0)
        if r["to"] in watchlist:
            total_in += amt
        if r["from"] in watchlist:
            total_out += amt
        max_amount = max(max_amount, amt)
    return {
        "count": len(rows),
        "total_in": total_in,
        "total_out": total_out,
        "net_flow": total_in - total_out,
        "max_amount": max_amount,
        "truncated": len(rows) >= scan_limit,
    }
