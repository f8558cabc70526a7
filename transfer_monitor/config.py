import os, pathlib
from dotenv import load_dotenv

# always load from local file
load_dotenv(".env")

def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")

def _int_or_none(name: str):
    v = (os.getenv(name) or "").strip()
    return int(v) if v else None

# -------- endpoints --------
RPC_URL     = os.getenv("AUTO_EVM_RPC") or os.getenv("RPC_URL")
WS_ENDPOINT = os.getenv("AUTO_WS") or os.getenv("WS_ENDPOINT")

# -------- ingestion --------
THRESHOLD_TOKENS       = float(os.getenv("THRESHOLD_TOKENS", "10000"))
START_BLOCK            = _int_or_none("START_BLOCK")
BACKFILL_BLOCKS        = int(os.getenv("BACKFILL_BLOCKS", "1000"))
BATCH_BLOCKS           = int(os.getenv("BATCH_BLOCKS", "1000"))
CONFIRMS               = int(os.getenv("CONFIRMS", "0"))
POLL_INTERVAL          = float(os.getenv("POLL_INTERVAL", "1.5"))
IDLE_INTERVAL          = float(os.getenv("IDLE_INTERVAL", "4"))
ERROR_BACKOFF          = float(os.getenv("ERROR_BACKOFF", "5"))
SUBSTRATE_FINALIZED_ONLY = _flag("SUBSTRATE_FINALIZED_ONLY")
SUBSTRATE_MAX_CATCHUP  = _int_or_none("SUBSTRATE_MAX_CATCHUP")  # per head; unset = whole backlog
SUBSTRATE_MODE         = (os.getenv("SUBSTRATE_MODE") or "subscription").strip().lower()
TOKEN_ADDRESSES = [
    a.strip().lower() for a in os.getenv("TOKEN_ADDRESSES", "").split(",") if a.strip()
]

# -------- files --------
OUT_DIR              = pathlib.Path(os.getenv("OUT_DIR", "out"))
DB_PATH              = os.getenv("DB_PATH", str(OUT_DIR / "transfers.db"))
STATE_FILE           = os.getenv("STATE_FILE", str(OUT_DIR / "state.json"))
SUBSTRATE_STATE_FILE = os.getenv("SUBSTRATE_STATE_FILE", str(OUT_DIR / "state_substrate.json"))
WHITELIST_FILE       = os.getenv("WHITELIST_FILE", "whitelist.json")
CSV_ENABLED          = _flag("CSV_ENABLED")
CSV_PATH             = os.getenv("CSV_PATH", str(OUT_DIR / "large-transfers.csv"))

# -------- query side --------
STATS_SCAN_LIMIT = int(os.getenv("STATS_SCAN_LIMIT", "100000"))
MCP_HOST         = os.getenv("MCP_HOST", "0.0.0.0")
MCP_PORT         = int(os.getenv("MCP_PORT", "8000"))
RESET_ON_SERVE   = _flag("RESET_ON_SERVE")

# -------- logging --------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE  = os.getenv("LOG_FILE")

# --- ERC-20 topics (keccak256) ---
ERC20_TRANSFER_TOPIC0 = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

ERC20_META_ABI = [
    {"constant": True, "inputs": [], "name": "decimals",
     "outputs": [{"name": "", "type": "uint8"}], "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [], "name": "symbol",
     "outputs": [{"name": "", "type": "string"}], "stateMutability": "view", "type": "function"},
]

DEFAULT_TOKEN_DECIMALS = 18
DEFAULT_TOKEN_SYMBOL   = "UNKNOWN"

# Substrate native unit, used when the node does not report properties
DEFAULT_CHAIN_DECIMALS = 12
DEFAULT_CHAIN_SYMBOL   = "UNIT"


def require_evm():
    if not RPC_URL:
        raise SystemExit("Missing AUTO_EVM_RPC or RPC_URL in .env")

def require_substrate():
    if not WS_ENDPOINT:
        raise SystemExit("Missing AUTO_WS or WS_ENDPOINT in .env (Substrate node websocket)")
