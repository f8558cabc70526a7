from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from transfer_monitor.helpers import canonical_address, format_units, to_float_amount


@dataclass(frozen=True)
class TokenMeta:
    decimals: int
    symbol: str


@dataclass(frozen=True)
class DecodedTransfer:
    """A transfer as read off the chain, before labels, metadata and time."""
    block_number: int
    block_hash: Optional[str]
    event_index: int
    from_addr: str
    to_addr: str
    amount_raw: int
    token: Optional[str] = None
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class Transfer:
    """
    Canonical, backend-agnostic transfer row.

    (block_hash, event_index) is the uniqueness key; block_hash falls back to
    the decimal block height when the backend supplies none.
    """
    time: str
    chain: str
    block_number: int
    block_hash: str
    event_index: int
    from_addr: str
    from_label: str
    to_addr: str
    to_label: str
    token_symbol: str
    token_decimals: int
    amount_raw: str
    amount_text: str
    amount_tokens: float
    token: Optional[str] = None
    tx_hash: Optional[str] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.block_hash, self.event_index)

    def as_row(self) -> Dict[str, Any]:
        return asdict(self)


def build_transfer(decoded: DecodedTransfer, *, time: str, meta: TokenMeta,
                   watchlist, chain: str) -> Transfer:
    from_addr = canonical_address(decoded.from_addr)
    to_addr   = canonical_address(decoded.to_addr)
    return Transfer(
        time=time,
        chain=chain,
        block_number=int(decoded.block_number),
        block_hash=decoded.block_hash or str(decoded.block_number),
        event_index=int(decoded.event_index),
        from_addr=from_addr,
        from_label=watchlist.label(from_addr),
        to_addr=to_addr,
        to_label=watchlist.label(to_addr),
        token_symbol=meta.symbol,
        token_decimals=meta.decimals,
        amount_raw=str(decoded.amount_raw),
        amount_text=format_units(decoded.amount_raw, meta.decimals),
        amount_tokens=to_float_amount(decoded.amount_raw, meta.decimals),
        token=decoded.token,
        tx_hash=decoded.tx_hash,
    )
