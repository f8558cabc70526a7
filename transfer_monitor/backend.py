from abc import ABC, abstractmethod
from typing import AsyncIterator, List

from transfer_monitor.filters import WatchlistFilter
from transfer_monitor.models import Transfer


class PollBackend(ABC):
    """
    One chain backend: knows how to read its chain's head and how to turn a
    block range into retained, canonical transfers (decode + filter). Storage
    and checkpointing are shared and live in the poller.
    """

    name: str = "backend"

    def __init__(self, transfer_filter: WatchlistFilter):
        self.transfer_filter = transfer_filter
        self.skipped = 0

    @property
    def watchlist(self):
        return self.transfer_filter.watchlist

    @abstractmethod
    async def latest_height(self) -> int:
        """Highest block that may be processed now."""

    @abstractmethod
    async def collect(self, start: int, end: int) -> List[Transfer]:
        """Retained transfers in [start, end], ordered by (block, event index)."""

    def heads(self) -> AsyncIterator[int]:
        """
        New head heights as they arrive. Optional: only backends that can push
        heads override this, the rest run in windowed mode off latest_height().
        """
        raise NotImplementedError(f"{self.name} backend has no head subscription")

    async def close(self):
        pass
