"""EVM backend: log decoding, token metadata cache, window collection."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.types import HexBytes

from tests.conftest import EXCHANGE, NOBODY, OTHER, STRANGER
from transfer_monitor import config
from transfer_monitor.evm import EvmBackend, TokenMetaCache, decode_transfer_log
from transfer_monitor.filters import WatchlistFilter
from transfer_monitor.models import TokenMeta

TOKEN = "0x" + "12" * 20


def addr_topic(addr):
    return HexBytes("0x" + "00" * 12 + addr[2:])


def make_log(block=100, index=0, from_addr=EXCHANGE, to_addr=OTHER, amount=5 * 10**18,
             token=TOKEN, data=None, extra_topics=()):
    return {
        "address": token,
        "blockNumber": block,
        "blockHash": HexBytes(block.to_bytes(32, "big")),
        "logIndex": index,
        "transactionHash": HexBytes(b"\x01" * 32),
        "topics": [HexBytes(config.ERC20_TRANSFER_TOPIC0), addr_topic(from_addr), addr_topic(to_addr),
                   *extra_topics],
        "data": data if data is not None else HexBytes(amount.to_bytes(32, "big")),
    }


class FakeEth:
    """Just enough of AsyncWeb3.eth for the backend."""

    def __init__(self, head=1000, logs=(), timestamp=1_700_000_000):
        self.head = head
        self.logs = list(logs)
        self.timestamp = timestamp
        self.get_logs_calls = []
        self.get_block_calls = []
        self.contract = MagicMock()

    @property
    def block_number(self):
        async def _head():
            return self.head
        return _head()

    async def get_logs(self, params):
        self.get_logs_calls.append(params)
        return [lg for lg in self.logs if params["fromBlock"] <= lg["blockNumber"] <= params["toBlock"]]

    async def get_block(self, block_identifier):
        self.get_block_calls.append(block_identifier)
        return {"number": block_identifier, "timestamp": self.timestamp}


def make_w3(**kw):
    w3 = MagicMock()
    w3.eth = FakeEth(**kw)
    return w3


def seeded_cache(w3):
    cache = TokenMetaCache(w3)
    cache.put(TOKEN, TokenMeta(18, "TKN"))
    return cache


class TestDecode:

    def test_decodes_transfer(self):
        d = decode_transfer_log(make_log(block=7, index=3, amount=42))
        assert d.block_number == 7
        assert d.event_index == 3
        assert d.from_addr == EXCHANGE
        assert d.to_addr == OTHER
        assert d.amount_raw == 42
        assert d.token == TOKEN
        assert d.block_hash == "0x" + "%064x" % 7

    def test_erc721_transfer_is_not_matched(self):
        lg = make_log(extra_topics=[HexBytes(b"\x00" * 31 + b"\x05")], data=HexBytes(b""))
        assert decode_transfer_log(lg) is None

    def test_other_topic_is_not_matched(self):
        lg = make_log()
        lg["topics"][0] = HexBytes(b"\x11" * 32)
        assert decode_transfer_log(lg) is None

    @pytest.mark.parametrize("data", [HexBytes(b""), "0x"])
    def test_empty_data_is_malformed(self, data):
        with pytest.raises(ValueError):
            decode_transfer_log(make_log(data=data))


class TestTokenMetaCache:

    @pytest.mark.asyncio
    async def test_reads_and_caches(self):
        w3 = make_w3()
        contract = w3.eth.contract.return_value
        contract.functions.decimals.return_value.call = AsyncMock(return_value=6)
        contract.functions.symbol.return_value.call = AsyncMock(return_value="USDC")
        cache = TokenMetaCache(w3)

        assert await cache.resolve(TOKEN) == TokenMeta(6, "USDC")
        assert await cache.resolve(TOKEN.upper().replace("0X", "0x")) == TokenMeta(6, "USDC")
        assert w3.eth.contract.call_count == 1

    @pytest.mark.asyncio
    async def test_failed_reads_fall_back(self):
        w3 = make_w3()
        contract = w3.eth.contract.return_value
        contract.functions.decimals.return_value.call = AsyncMock(side_effect=ValueError("revert"))
        contract.functions.symbol.return_value.call = AsyncMock(side_effect=ValueError("revert"))
        cache = TokenMetaCache(w3)

        assert await cache.resolve(TOKEN) == TokenMeta(18, "UNKNOWN")
        assert TOKEN in cache

    @pytest.mark.asyncio
    async def test_partial_failure(self):
        w3 = make_w3()
        contract = w3.eth.contract.return_value
        contract.functions.decimals.return_value.call = AsyncMock(return_value=8)
        contract.functions.symbol.return_value.call = AsyncMock(side_effect=ValueError("bytes32"))

        assert await TokenMetaCache(w3).resolve(TOKEN) == TokenMeta(8, "UNKNOWN")


class TestEvmBackend:

    def test_connect_uses_async_http_provider(self, watchlist):
        backend = EvmBackend.connect("http://127.0.0.1:8545", WatchlistFilter(watchlist), confirms=2)
        assert isinstance(backend.w3, AsyncWeb3)
        assert isinstance(backend.w3.provider, AsyncHTTPProvider)
        assert backend.confirms == 2

    @pytest.mark.asyncio
    async def test_latest_height_subtracts_confirmations(self, watchlist):
        backend = EvmBackend(make_w3(head=500), WatchlistFilter(watchlist), confirms=6)
        assert await backend.latest_height() == 494

    @pytest.mark.asyncio
    async def test_collect_keeps_only_watchlisted(self, watchlist):
        w3 = make_w3(logs=[
            make_log(block=101, index=1, from_addr=EXCHANGE, to_addr=OTHER, amount=5000000000000000000),
            make_log(block=101, index=0, from_addr=STRANGER, to_addr=NOBODY, amount=10**30),
            make_log(block=100, index=4, from_addr=OTHER, to_addr=EXCHANGE, amount=10**18),
        ])
        backend = EvmBackend(w3, WatchlistFilter(watchlist), token_meta=seeded_cache(w3))

        out = await backend.collect(100, 199)

        assert [(t.block_number, t.event_index) for t in out] == [(100, 4), (101, 1)]
        t = out[1]
        assert t.amount_tokens == 5.0
        assert t.amount_text == "5"
        assert t.amount_raw == "5000000000000000000"
        assert t.from_label == "Exchange"
        assert t.to_label == ""
        assert t.token_symbol == "TKN"
        assert t.chain == "evm"
        assert t.time == "2023-11-14T22:13:20.000Z"
        # one timestamp lookup per block with retained transfers
        assert sorted(w3.eth.get_block_calls) == [100, 101]

    @pytest.mark.asyncio
    async def test_malformed_log_is_skipped(self, watchlist):
        w3 = make_w3(logs=[
            make_log(block=100, index=0, data="0x"),
            make_log(block=100, index=1),
        ])
        backend = EvmBackend(w3, WatchlistFilter(watchlist), token_meta=seeded_cache(w3))

        out = await backend.collect(100, 100)

        assert len(out) == 1
        assert backend.skipped == 1

    @pytest.mark.asyncio
    async def test_log_without_position_does_not_sink_the_window(self, watchlist):
        pending = make_log(block=100, index=0)
        pending["logIndex"] = None
        headless = make_log(block=100, index=2)
        del headless["blockNumber"]
        w3 = make_w3(logs=[pending, make_log(block=100, index=1), headless])
        backend = EvmBackend(w3, WatchlistFilter(watchlist), token_meta=seeded_cache(w3))

        out = await backend.collect(100, 100)

        assert [(t.block_number, t.event_index) for t in out] == [(100, 1)]
        assert backend.skipped == 2

    @pytest.mark.asyncio
    async def test_unwatched_traffic_costs_no_lookups(self, watchlist):
        w3 = make_w3(logs=[make_log(from_addr=STRANGER, to_addr=NOBODY)])
        backend = EvmBackend(w3, WatchlistFilter(watchlist))

        assert await backend.collect(0, 1000) == []
        assert w3.eth.get_block_calls == []
        assert w3.eth.contract.call_count == 0

    @pytest.mark.asyncio
    async def test_token_allow_list_in_request(self, watchlist):
        w3 = make_w3()
        backend = EvmBackend(w3, WatchlistFilter(watchlist), token_addresses=[TOKEN])

        await backend.collect(1, 2)

        params = w3.eth.get_logs_calls[0]
        assert params["fromBlock"] == 1 and params["toBlock"] == 2
        assert params["topics"] == [config.ERC20_TRANSFER_TOPIC0]
        assert [a.lower() for a in params["address"]] == [TOKEN]
