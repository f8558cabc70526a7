"""Pytest configuration and shared fixtures for all tests."""

import pytest

from transfer_monitor.db import db, ensure_schema
from transfer_monitor.helpers import iso_now
from transfer_monitor.models import DecodedTransfer, TokenMeta, build_transfer
from transfer_monitor.watchlist import Watchlist

EXCHANGE = "0x" + "aa" * 20
OTHER    = "0x" + "bb" * 20
STRANGER = "0x" + "cc" * 20
NOBODY   = "0x" + "dd" * 20

ALICE = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
BOB   = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"


@pytest.fixture
def watchlist():
    """Watchlist with one EVM exchange (mixed case on disk) and one SS58 account."""
    return Watchlist({EXCHANGE.upper().replace("0X", "0x"): "Exchange", ALICE: "Alice"})


@pytest.fixture
def conn(tmp_path):
    """Fresh on-disk SQLite store."""
    c = db(str(tmp_path / "transfers.db"))
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def make_transfer(watchlist):
    """Factory for canonical transfers."""

    def _make(block_number=1, event_index=0, from_addr=EXCHANGE, to_addr=OTHER,
              amount_raw=5 * 10**18, decimals=18, symbol="TKN", time=None,
              block_hash="auto", chain="evm"):
        if block_hash == "auto":
            block_hash = "0x%064x" % block_number
        decoded = DecodedTransfer(
            block_number=block_number,
            block_hash=block_hash,
            event_index=event_index,
            from_addr=from_addr,
            to_addr=to_addr,
            amount_raw=amount_raw,
        )
        return build_transfer(decoded, time=time or iso_now(), meta=TokenMeta(decimals, symbol),
                              watchlist=watchlist, chain=chain)

    return _make
