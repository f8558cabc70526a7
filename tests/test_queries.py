"""Query API: list and stats."""

import pytest
from pydantic import ValidationError

from tests.conftest import EXCHANGE, NOBODY, OTHER, STRANGER
from transfer_monitor.db import append_transfers
from transfer_monitor.queries import ListIn, StatsIn, list_transfers, transfer_stats


class TestListTransfers:

    def test_pages(self, conn, make_transfer):
        append_transfers(conn, [make_transfer(block_number=i) for i in range(1, 6)])
        out = list_transfers(conn, ListIn(limit=2, page=2))
        assert out["count"] == 5
        assert out["page"] == 2
        assert out["page_size"] == 2
        assert len(out["rows"]) == 2

    @pytest.mark.parametrize("kwargs", [
        {"limit": 0},
        {"limit": 501},
        {"page": 0},
        {"min_amount": -1},
    ])
    def test_rejects_bad_input(self, kwargs):
        with pytest.raises(ValidationError):
            ListIn(**kwargs)


class TestStats:

    def test_flows(self, conn, make_transfer, watchlist):
        append_transfers(conn, [
            make_transfer(block_number=1, from_addr=OTHER, to_addr=EXCHANGE, amount_raw=300 * 10**18),
            make_transfer(block_number=2, from_addr=EXCHANGE, to_addr=OTHER, amount_raw=100 * 10**18),
            make_transfer(block_number=3, from_addr=STRANGER, to_addr=NOBODY, amount_raw=900 * 10**18),
        ])
        out = transfer_stats(conn, StatsIn(), watchlist)
        assert out["count"] == 3
        assert out["total_in"] == 300.0
        assert out["total_out"] == 100.0
        assert out["net_flow"] == 200.0
        assert out["max_amount"] == 900.0
        assert out["truncated"] is False

    def test_scan_cap(self, conn, make_transfer, watchlist):
        append_transfers(conn, [make_transfer(block_number=i) for i in range(1, 6)])
        out = transfer_stats(conn, StatsIn(), watchlist, scan_limit=3)
        assert out["count"] == 3
        assert out["truncated"] is True

    def test_symbol_filter(self, conn, make_transfer, watchlist):
        append_transfers(conn, [
            make_transfer(block_number=1, symbol="DOT", to_addr=EXCHANGE, from_addr=OTHER),
            make_transfer(block_number=2, symbol="TKN", to_addr=EXCHANGE, from_addr=OTHER),
        ])
        out = transfer_stats(conn, StatsIn(symbol="DOT"), watchlist)
        assert out["count"] == 1
        assert out["total_in"] == 5.0
