import asyncio
from typing import List, Optional

from loguru import logger
from substrateinterface import SubstrateInterface

from transfer_monitor import config
from transfer_monitor.backend import PollBackend
from transfer_monitor.filters import WatchlistFilter
from transfer_monitor.helpers import hex_to_int, iso_from_millis, iso_now
from transfer_monitor.models import DecodedTransfer, TokenMeta, Transfer, build_transfer

TRANSFER_MODULE = "Balances"
TRANSFER_EVENT  = "Transfer"


def _first(v):
    return v[0] if isinstance(v, (list, tuple)) and v else v

def _account(v) -> str:
    # AccountId may arrive plain or wrapped, e.g. {'Id': '5F...'}
    if isinstance(v, dict) and len(v) == 1:
        v = next(iter(v.values()))
    if v is None:
        raise ValueError("missing account")
    return str(v)

def _record_value(record) -> dict:
    value = getattr(record, "value", record)
    if not isinstance(value, dict):
        raise TypeError(f"unexpected event record {type(value).__name__}")
    return value


def decode_balance_transfer(record, block_number: int, block_hash: str,
                            event_index: int) -> Optional[DecodedTransfer]:
    """
    Balances.Transfer from a System.Events record. Attributes come either
    named ({'from', 'to', 'amount'}) or positional ((from, to, amount))
    depending on runtime metadata version.
    """
    value = _record_value(record)
    event = value.get("event") or {}
    module_id = value.get("module_id") or event.get("module_id")
    event_id  = value.get("event_id") or event.get("event_id")
    if module_id != TRANSFER_MODULE or event_id != TRANSFER_EVENT:
        return None

    attrs = value.get("attributes", event.get("attributes"))
    if isinstance(attrs, dict):
        from_addr, to_addr, amount = attrs["from"], attrs["to"], attrs["amount"]
    elif isinstance(attrs, (list, tuple)) and len(attrs) >= 3:
        from_addr, to_addr, amount = (a.get("value") if isinstance(a, dict) and "value" in a else a
                                      for a in attrs[:3])
    else:
        raise ValueError(f"unexpected transfer attributes: {attrs!r}")

    return DecodedTransfer(
        block_number=int(block_number),
        block_hash=str(block_hash).lower() if block_hash else None,
        event_index=int(event_index),
        from_addr=_account(from_addr),
        to_addr=_account(to_addr),
        amount_raw=hex_to_int(amount),
    )


class SubstrateBackend(PollBackend):
    """
    Native-unit transfers of a Substrate chain. The RPC client is synchronous,
    so every call runs in a worker thread; head subscriptions use a second
    connection since a subscription occupies its websocket.
    """

    name = "substrate"

    def __init__(self, client, transfer_filter: WatchlistFilter, *,
                 subscriber=None, finalized_only: bool = False,
                 meta: Optional[TokenMeta] = None):
        super().__init__(transfer_filter)
        self.client = client
        self.subscriber = subscriber
        self.finalized_only = finalized_only
        self.meta = meta or self.chain_meta(client)

    @classmethod
    def connect(cls, url: str, transfer_filter: WatchlistFilter, **kw) -> "SubstrateBackend":
        client = SubstrateInterface(url=url)
        subscriber = SubstrateInterface(url=url)
        logger.info(f"[substrate] connected to {client.chain} at {url}")
        return cls(client, transfer_filter, subscriber=subscriber, **kw)

    @staticmethod
    def chain_meta(client) -> TokenMeta:
        decimals = _first(getattr(client, "token_decimals", None))
        symbol   = _first(getattr(client, "token_symbol", None))
        meta = TokenMeta(
            int(decimals) if decimals is not None else config.DEFAULT_CHAIN_DECIMALS,
            str(symbol) if symbol else config.DEFAULT_CHAIN_SYMBOL,
        )
        logger.info(f"[substrate] native unit {meta.symbol}, decimals={meta.decimals}")
        return meta

    async def latest_height(self) -> int:
        header = await asyncio.to_thread(self.client.get_block_header,
                                         finalized_only=self.finalized_only)
        return hex_to_int(header["header"]["number"])

    async def block_time(self, block_hash: str) -> str:
        try:
            now = await asyncio.to_thread(self.client.query, "Timestamp", "Now",
                                          block_hash=block_hash)
            return iso_from_millis(now.value)
        except Exception as e:
            logger.warning(f"[substrate] Timestamp.Now unavailable at {block_hash}: {e}; using wall clock")
            return iso_now()

    async def collect_block(self, number: int) -> List[Transfer]:
        block_hash = await asyncio.to_thread(self.client.get_block_hash, number)
        if block_hash is None:
            raise LookupError(f"block {number} not found")
        events = await asyncio.to_thread(self.client.get_events, block_hash)

        out: List[Transfer] = []
        ts = None
        for idx, record in enumerate(events):
            try:
                decoded = decode_balance_transfer(record, number, block_hash, idx)
            except (KeyError, IndexError, TypeError, ValueError) as e:
                self.skipped += 1
                logger.warning(f"[substrate] skipping malformed event {number}/{idx}: {e}")
                continue
            if decoded is None or not self.transfer_filter.retain(decoded):
                continue
            if ts is None:
                ts = await self.block_time(block_hash)
            out.append(build_transfer(decoded, time=ts, meta=self.meta,
                                      watchlist=self.watchlist, chain=self.name))
        return out

    async def collect(self, start: int, end: int) -> List[Transfer]:
        out: List[Transfer] = []
        for n in range(start, end + 1):
            out.extend(await self.collect_block(n))
        return out

    async def heads(self):
        """
        Yield new head heights pushed by the node. The blocking subscription
        runs in a worker thread; heads already queued are yielded before the
        subscription's end or error is surfaced.
        """
        if self.subscriber is None:
            raise RuntimeError("substrate backend has no subscription connection")
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        done = False

        def handler(obj, update_nr, subscription_id):
            if done:
                return True  # non-None result ends the subscription
            loop.call_soon_threadsafe(queue.put_nowait, hex_to_int(obj["header"]["number"]))

        sub = asyncio.ensure_future(asyncio.to_thread(
            self.subscriber.subscribe_block_headers, handler, finalized_only=self.finalized_only
        ))
        try:
            while True:
                if not queue.empty():
                    yield queue.get_nowait()
                    continue
                if sub.done():
                    sub.result()  # re-raises a dropped websocket
                    return
                nxt = asyncio.ensure_future(queue.get())
                try:
                    await asyncio.wait({nxt, sub}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    if not nxt.done():
                        nxt.cancel()
                if nxt.done() and not nxt.cancelled():
                    yield nxt.result()
        finally:
            done = True

    async def close(self):
        for c in (self.client, self.subscriber):
            if c is not None:
                await asyncio.to_thread(c.close)
