from transfer_monitor.watchlist import Watchlist


class WatchlistFilter:
    """
    Ingestion-time retention rule: keep a transfer iff either side is on the
    watchlist, whatever the amount.

    THRESHOLD_TOKENS is deliberately not consulted here; it only seeds the
    default minimum amount on the query side.
    """

    def __init__(self, watchlist: Watchlist):
        self.watchlist = watchlist

    def retain(self, transfer) -> bool:
        return self.watchlist.involves(transfer.from_addr, transfer.to_addr)

    __call__ = retain
