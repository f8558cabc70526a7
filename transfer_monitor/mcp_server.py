# mcp_server.py -- read-only query tools over the transfer store
import argparse, sqlite3
from typing import Any, Dict, Optional

from fastmcp import FastMCP
from loguru import logger

from transfer_monitor import config
from transfer_monitor.checkpoint import Checkpoint
from transfer_monitor.db import clear_transfers, count_transfers, db, ensure_schema
from transfer_monitor.helpers import iso_now
from transfer_monitor.queries import ListIn, StatsIn, list_transfers, transfer_stats
from transfer_monitor.watchlist import load_watchlist

mcp = FastMCP("transfer-monitor-mcp", version="0.1.0")
STARTED_AT = iso_now()

_conn: Optional[sqlite3.Connection] = None

def get_db() -> sqlite3.Connection:
    global _conn
    if _conn is None:
        _conn = db()
        ensure_schema(_conn)
    return _conn

# ----------------- Tools ------------------
@mcp.tool(name="transfers_list")
def transfers_list_t(args: ListIn):
    """Stored watchlist transfers, newest first. min_amount defaults to THRESHOLD_TOKENS."""
    if "min_amount" not in args.model_fields_set:
        args = args.model_copy(update={"min_amount": config.THRESHOLD_TOKENS})
    return list_transfers(get_db(), args)

@mcp.tool(name="transfers_stats")
def transfers_stats_t(args: StatsIn):
    """Inflow, outflow, net flow and max amount for watchlisted addresses."""
    return transfer_stats(get_db(), args, load_watchlist(config.WHITELIST_FILE))

@mcp.tool(name="watchlist")
def watchlist_t() -> Dict[str, str]:
    """Address -> label mapping currently on disk."""
    return load_watchlist(config.WHITELIST_FILE).as_dict()

@mcp.tool(name="meta")
def meta_t() -> Dict[str, Any]:
    """Server start time, store size and per-backend checkpoints."""
    return {
        "started_at": STARTED_AT,
        "db_path": config.DB_PATH,
        "transfers": count_transfers(get_db()),
        "checkpoints": {
            "evm": Checkpoint(config.STATE_FILE).load(),
            "substrate": Checkpoint(config.SUBSTRATE_STATE_FILE).load(),
        },
        "default_min_amount": config.THRESHOLD_TOKENS,
    }

def run(argv=None):
    ap = argparse.ArgumentParser(prog="transfer-monitor-mcp")
    ap.add_argument("--reset", action="store_true",
                    help="delete all stored transfers before serving")
    ap.add_argument("--host", default=config.MCP_HOST)
    ap.add_argument("--port", type=int, default=config.MCP_PORT)
    args = ap.parse_args(argv)

    if args.reset or config.RESET_ON_SERVE:
        clear_transfers(get_db())
    logger.info(f"[mcp] serving {config.DB_PATH} on {args.host}:{args.port}")
    mcp.run(transport="http", host=args.host, port=args.port)

if __name__ == "__main__":
    run()
