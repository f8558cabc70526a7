import asyncio
from typing import Optional, Sequence

from loguru import logger

from transfer_monitor import config
from transfer_monitor.backend import PollBackend
from transfer_monitor.checkpoint import Checkpoint
from transfer_monitor.db import append_transfers


class Poller:
    """
    Sequential ingest loop for one backend. Owns that backend's checkpoint and
    is the only writer of its transfers.

    Per window: collect (decode + filter) -> append to store -> sinks ->
    checkpoint. The checkpoint only moves after the store commit returned, so
    a crash in between replays the window and the unique key absorbs it.

    Chain reorganisations inside already checkpointed ranges are not detected;
    rows from orphaned blocks stay in the store.
    """

    def __init__(self, backend: PollBackend, conn, checkpoint: Checkpoint, *,
                 window: int = config.BATCH_BLOCKS,
                 lookback: int = config.BACKFILL_BLOCKS,
                 start_block: Optional[int] = config.START_BLOCK,
                 poll_interval: float = config.POLL_INTERVAL,
                 idle_interval: float = config.IDLE_INTERVAL,
                 error_backoff: float = config.ERROR_BACKOFF,
                 max_catchup: Optional[int] = config.SUBSTRATE_MAX_CATCHUP,
                 sinks: Sequence = ()):
        self.backend = backend
        self.conn = conn
        self.checkpoint = checkpoint
        self.window = max(1, int(window))
        self.lookback = max(0, int(lookback))
        self.start_block = start_block
        self.poll_interval = poll_interval
        self.idle_interval = idle_interval
        self.error_backoff = error_backoff
        self.max_catchup = max(1, int(max_catchup)) if max_catchup else None
        self.sinks = list(sinks)
        self.stop = asyncio.Event()
        self.next_block: Optional[int] = None
        self.tag = f"[poller:{backend.name}]"

    # ---------- pieces ----------
    async def initial_position(self) -> int:
        last = self.checkpoint.load()
        if last > 0:
            logger.info(f"{self.tag} resuming after checkpoint {last}")
            return last + 1
        if self.start_block is not None:
            logger.info(f"{self.tag} no checkpoint; starting at configured block {self.start_block}")
            return max(0, int(self.start_block))
        head = await self.backend.latest_height()
        start = max(0, head - self.lookback)
        logger.info(f"{self.tag} no checkpoint; head={head}, starting {self.lookback} blocks back at {start}")
        return start

    async def process_window(self, start: int, end: int) -> int:
        """Ingest [start, end]; store errors propagate and leave the checkpoint untouched."""
        transfers = await self.backend.collect(start, end)
        inserted = append_transfers(self.conn, transfers)
        for sink in self.sinks:
            try:
                sink.append(transfers)
            except Exception as e:
                logger.warning(f"{self.tag} sink {type(sink).__name__} failed for blocks {start}-{end}: {e}")
        self.checkpoint.advance(end)
        if transfers:
            logger.info(f"{self.tag} blocks {start}-{end}: {len(transfers)} watchlist transfers, {inserted} new")
        else:
            logger.debug(f"{self.tag} blocks {start}-{end}: nothing retained")
        return inserted

    async def pause(self, seconds: float):
        """Sleep, waking early on shutdown."""
        if seconds <= 0 or self.stop.is_set():
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self.stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ---------- windowed mode ----------
    async def step(self) -> bool:
        """One windowed iteration. Returns False when idle (caught up with head)."""
        if self.next_block is None:
            self.next_block = await self.initial_position()
        head = await self.backend.latest_height()
        if self.next_block > head:
            return False
        start = self.next_block
        end = min(start + self.window - 1, head)
        await self.process_window(start, end)
        self.next_block = end + 1
        return True

    async def run_windowed(self):
        logger.info(f"{self.tag} windowed polling, window={self.window} blocks")
        while not self.stop.is_set():
            try:
                progressed = await self.step()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{self.tag} window starting at {self.next_block} failed: "
                               f"{type(e).__name__}: {e}; retrying in {self.error_backoff}s")
                await self.pause(self.error_backoff)
                continue
            await self.pause(self.poll_interval if progressed else self.idle_interval)
        logger.info(f"{self.tag} stopped at checkpoint {self.checkpoint.last_processed_block}")

    # ---------- subscription mode ----------
    async def on_head(self, height: int):
        """
        Ingest from next_block up to the new head in window-sized steps. With
        max_catchup set, at most that many blocks are taken per head and the
        rest waits for later heads; blocks are never skipped.
        """
        if self.next_block is None:
            if self.checkpoint.has_position:
                self.next_block = self.checkpoint.last_processed_block + 1
            else:
                self.next_block = height
        start = self.next_block
        end = height
        if self.max_catchup is not None:
            end = min(end, start + self.max_catchup - 1)
        if start > end:
            return
        if end < height:
            logger.info(f"{self.tag} {height - start + 1} blocks behind head #{height}; "
                        f"taking {start}-{end} now")
        for lo in range(start, end + 1, self.window):
            if self.stop.is_set():
                return
            hi = min(lo + self.window - 1, end)
            await self.process_window(lo, hi)
            self.next_block = hi + 1

    async def _next_head(self, heads) -> Optional[int]:
        """Next head from the subscription, or None once shutdown was requested."""
        async def pull():
            return await heads.__anext__()

        nxt = asyncio.ensure_future(pull())
        stopped = asyncio.ensure_future(self.stop.wait())
        try:
            await asyncio.wait({nxt, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (nxt, stopped):
                if not fut.done():
                    fut.cancel()
            await asyncio.gather(nxt, stopped, return_exceptions=True)
        if self.stop.is_set():
            return None
        # StopAsyncIteration or the subscription's error propagates
        return nxt.result()

    async def run_subscription(self):
        self.checkpoint.load()
        self.next_block = None
        if self.checkpoint.has_position:
            logger.info(f"{self.tag} resuming after checkpoint {self.checkpoint.last_processed_block}")
        else:
            logger.info(f"{self.tag} no checkpoint; starting at the next new head")
        while not self.stop.is_set():
            heads = None
            try:
                heads = self.backend.heads()
                while True:
                    height = await self._next_head(heads)
                    if height is None:
                        break
                    try:
                        await self.on_head(height)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        # checkpoint stays put; the next head retries the gap
                        logger.warning(f"{self.tag} head #{height} failed: {type(e).__name__}: {e}")
                        await self.pause(self.error_backoff)
            except StopAsyncIteration:
                logger.warning(f"{self.tag} head subscription ended; resubscribing")
            except (asyncio.CancelledError, NotImplementedError):
                raise
            except Exception as e:
                logger.warning(f"{self.tag} head subscription failed: {type(e).__name__}: {e}; "
                               f"resubscribing in {self.error_backoff}s")
            finally:
                if heads is not None:
                    await heads.aclose()
            await self.pause(self.error_backoff)
        logger.info(f"{self.tag} stopped at checkpoint {self.checkpoint.last_processed_block}")

    async def run(self, mode: str = "windowed"):
        if mode == "subscription":
            await self.run_subscription()
        else:
            await self.run_windowed()
