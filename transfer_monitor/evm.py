from typing import Dict, List, Optional, Sequence

from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from transfer_monitor import config
from transfer_monitor.backend import PollBackend
from transfer_monitor.filters import WatchlistFilter
from transfer_monitor.helpers import hex_to_int, iso_from_seconds, to_hex, topic_to_addr
from transfer_monitor.models import DecodedTransfer, TokenMeta, Transfer, build_transfer


# ---------- decode ----------
def decode_transfer_log(lg) -> Optional[DecodedTransfer]:
    """
    ERC-20 Transfer(address indexed from, address indexed to, uint256 value).

    Returns None for anything else, including ERC-721 Transfer which shares
    topic0 but indexes a fourth topic. Raises on malformed logs.
    """
    topics = [to_hex(t).lower() for t in lg["topics"]]
    if len(topics) != 3 or topics[0] != config.ERC20_TRANSFER_TOPIC0:
        return None
    data = lg["data"]
    if isinstance(data, str) and data in ("", "0x"):
        raise ValueError("empty transfer data")
    return DecodedTransfer(
        block_number=int(lg["blockNumber"]),
        block_hash=(to_hex(lg.get("blockHash")) or "").lower() or None,
        event_index=int(lg["logIndex"]),
        from_addr=topic_to_addr(topics[1]),
        to_addr=topic_to_addr(topics[2]),
        amount_raw=hex_to_int(data),
        token=to_hex(lg["address"]).lower(),
        tx_hash=(to_hex(lg.get("transactionHash")) or "").lower() or None,
    )


# ---------- token metadata ----------
class TokenMetaCache:
    """
    Per-contract decimals/symbol, read lazily over RPC. A failed read falls
    back to 18 / UNKNOWN so a broken token contract never blocks ingestion.
    Process-local; rebuilt from scratch on restart.
    """

    def __init__(self, w3):
        self.w3 = w3
        self._cache: Dict[str, TokenMeta] = {}

    def __contains__(self, token) -> bool:
        return token.lower() in self._cache

    def put(self, token: str, meta: TokenMeta):
        self._cache[token.lower()] = meta

    async def resolve(self, token: str) -> TokenMeta:
        key = token.lower()
        meta = self._cache.get(key)
        if meta is None:
            meta = await self._read(token)
            self._cache[key] = meta
        return meta

    async def _read(self, token: str) -> TokenMeta:
        try:
            contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(token), abi=config.ERC20_META_ABI
            )
        except Exception as e:
            logger.warning(f"[evm] token {token}: cannot bind contract ({e}); using defaults")
            return TokenMeta(config.DEFAULT_TOKEN_DECIMALS, config.DEFAULT_TOKEN_SYMBOL)
        decimals = await self._call(contract.functions.decimals(), config.DEFAULT_TOKEN_DECIMALS, token)
        symbol   = await self._call(contract.functions.symbol(), config.DEFAULT_TOKEN_SYMBOL, token)
        try:
            return TokenMeta(int(decimals), str(symbol))
        except (TypeError, ValueError):
            return TokenMeta(config.DEFAULT_TOKEN_DECIMALS, str(symbol))

    async def _call(self, fn, default, token):
        try:
            return await fn.call()
        except Exception as e:
            name = getattr(fn, "fn_name", "call")
            logger.debug(f"[evm] token {token}: {name}() failed ({e}); using {default!r}")
            return default


# ---------- backend ----------
class EvmBackend(PollBackend):
    name = "evm"

    def __init__(self, w3, transfer_filter: WatchlistFilter, *,
                 token_addresses: Sequence[str] = (), confirms: int = 0,
                 token_meta: Optional[TokenMetaCache] = None):
        super().__init__(transfer_filter)
        self.w3 = w3
        self.confirms = int(confirms)
        self.token_addresses = [Web3.to_checksum_address(a) for a in token_addresses]
        self.token_meta = token_meta or TokenMetaCache(w3)

    @classmethod
    def connect(cls, rpc_url: str, transfer_filter: WatchlistFilter, **kw) -> "EvmBackend":
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)), transfer_filter, **kw)

    async def latest_height(self) -> int:
        head = await self.w3.eth.block_number
        return max(0, int(head) - self.confirms)

    async def fetch_logs(self, start: int, end: int) -> list:
        params = {
            "fromBlock": start,
            "toBlock": end,
            "topics": [config.ERC20_TRANSFER_TOPIC0],
        }
        if self.token_addresses:
            params["address"] = self.token_addresses
        return list(await self.w3.eth.get_logs(params))

    async def block_time(self, number: int, cache: Dict[int, str]) -> str:
        if number not in cache:
            b = await self.w3.eth.get_block(block_identifier=number)
            cache[number] = iso_from_seconds(b["timestamp"])
        return cache[number]

    async def collect(self, start: int, end: int) -> List[Transfer]:
        logs = await self.fetch_logs(start, end)

        kept: List[DecodedTransfer] = []
        for lg in logs:
            try:
                decoded = decode_transfer_log(lg)
            except (KeyError, IndexError, TypeError, ValueError) as e:
                self.skipped += 1
                logger.warning(f"[evm] skipping malformed log in blocks {start}-{end}: {e}")
                continue
            if decoded is not None and self.transfer_filter.retain(decoded):
                kept.append(decoded)
        kept.sort(key=lambda d: (d.block_number, d.event_index))

        out: List[Transfer] = []
        times: Dict[int, str] = {}
        for decoded in kept:
            meta = await self.token_meta.resolve(decoded.token)
            ts = await self.block_time(decoded.block_number, times)
            out.append(build_transfer(decoded, time=ts, meta=meta,
                                      watchlist=self.watchlist, chain=self.name))
        logger.debug(f"[evm] blocks {start}-{end}: {len(logs)} logs, {len(out)} retained")
        return out
