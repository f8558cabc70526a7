from datetime import datetime, timedelta, timezone
from web3 import Web3
from web3.types import HexBytes

# ---------------- helpers ----------------
def to_hex(x):
    if x is None: return None
    if isinstance(x, (HexBytes, bytes, bytearray)): return Web3.to_hex(x)
    if isinstance(x, int): return hex(x)
    return str(x)

def hex_to_int(x):
    if x is None: return None
    if isinstance(x, int): return x
    if isinstance(x, (bytes, bytearray)):
        if not x:
            raise ValueError("empty byte string")
        return int.from_bytes(x, "big")
    s = str(x)
    return int(s, 16) if s.startswith("0x") else int(s)

def canonical_address(addr) -> str:
    """
    Hex addresses are compared lowercase; anything else (SS58) is
    case-sensitive and kept verbatim.
    """
    if addr is None: return ""
    s = str(addr).strip()
    return s.lower() if s[:2].lower() == "0x" else s

def topic_to_addr(topic_hex: str) -> str:
    # topics are 32-byte values; address is the last 20 bytes
    h = topic_hex[2:] if topic_hex.startswith("0x") else topic_hex
    if len(h) != 64:
        raise ValueError(f"bad topic length: {len(h)}")
    return "0x" + h[-40:].lower()

# ---------------- amounts ----------------
def format_units(raw: int, decimals: int) -> str:
    """
    Exact decimal string of raw / 10**decimals, trailing fractional zeros
    stripped. No floating point involved.
    """
    raw, decimals = int(raw), int(decimals)
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    sign = "-" if raw < 0 else ""
    whole, frac = divmod(abs(raw), 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{sign}{whole}.{frac_str}" if frac_str else f"{sign}{whole}"

def to_float_amount(raw: int, decimals: int) -> float:
    # int / int is correctly rounded, no 2**53 overflow on the way
    return int(raw) / (10 ** int(decimals))

# ---------------- time ----------------
def iso_utc(dt: datetime) -> str:
    """2024-01-01T00:00:00.000Z; fixed width so strings sort chronologically."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"

def iso_from_seconds(ts) -> str:
    return iso_utc(datetime.fromtimestamp(int(ts), tz=timezone.utc))

def iso_from_millis(ms) -> str:
    return iso_utc(datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc))

def iso_now() -> str:
    return iso_utc(datetime.now(timezone.utc))

def iso_minutes_ago(minutes: float) -> str:
    return iso_utc(datetime.now(timezone.utc) - timedelta(minutes=minutes))
