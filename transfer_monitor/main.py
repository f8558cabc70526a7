import argparse, asyncio, signal, sys
import uvloop
from loguru import logger

from transfer_monitor import config
from transfer_monitor.checkpoint import Checkpoint
from transfer_monitor.csv_sink import CsvSink
from transfer_monitor.db import db, ensure_schema
from transfer_monitor.evm import EvmBackend
from transfer_monitor.filters import WatchlistFilter
from transfer_monitor.poller import Poller
from transfer_monitor.substrate import SubstrateBackend
from transfer_monitor.watchlist import load_watchlist


def setup_logging():
    logger.remove()
    logger.add(sys.stderr, level=config.LOG_LEVEL)
    if config.LOG_FILE:
        logger.add(
            config.LOG_FILE,
            rotation="1 day",
            retention="7 days",
            level=config.LOG_LEVEL,
            encoding="utf-8",
        )

def open_store():
    conn = db()
    ensure_schema(conn)
    return conn

def build_evm_poller(watchlist) -> Poller:
    backend = EvmBackend.connect(
        config.RPC_URL,
        WatchlistFilter(watchlist),
        token_addresses=config.TOKEN_ADDRESSES,
        confirms=config.CONFIRMS,
    )
    logger.info(f"[evm] RPC {config.RPC_URL}, window={config.BATCH_BLOCKS}, confirms={config.CONFIRMS}")
    if config.TOKEN_ADDRESSES:
        logger.info(f"[evm] only watching token contracts: {','.join(config.TOKEN_ADDRESSES)}")
    sinks = [CsvSink(config.CSV_PATH)] if config.CSV_ENABLED else []
    return Poller(backend, open_store(), Checkpoint(config.STATE_FILE), sinks=sinks)

async def build_substrate_poller(watchlist, stop: asyncio.Event):
    while not stop.is_set():
        try:
            backend = await asyncio.to_thread(
                SubstrateBackend.connect,
                config.WS_ENDPOINT,
                WatchlistFilter(watchlist),
                finalized_only=config.SUBSTRATE_FINALIZED_ONLY,
            )
        except Exception as e:
            logger.warning(f"[substrate] connect to {config.WS_ENDPOINT} failed: {e}; "
                           f"retrying in {config.ERROR_BACKOFF}s")
            await asyncio.sleep(config.ERROR_BACKOFF)
            continue
        if config.SUBSTRATE_MODE == "windowed":
            logger.info(f"[substrate] windowed polling, window={config.BATCH_BLOCKS}")
            window = config.BATCH_BLOCKS
        else:
            # per-block checkpoints during catch-up
            window = 1
        return Poller(backend, open_store(), Checkpoint(config.SUBSTRATE_STATE_FILE), window=window)
    return None

async def run_backend(name: str, watchlist, stop: asyncio.Event, pollers: list):
    if name == "evm":
        poller = build_evm_poller(watchlist)
        mode = "windowed"
    else:
        poller = await build_substrate_poller(watchlist, stop)
        mode = "windowed" if config.SUBSTRATE_MODE == "windowed" else "subscription"
        if poller is None:
            return
    poller.stop = stop
    pollers.append(poller)
    await poller.run(mode)

async def main(argv=None):
    ap = argparse.ArgumentParser(prog="transfer-monitor")
    ap.add_argument("backend", choices=["evm", "substrate", "all"], nargs="?", default="evm")
    args = ap.parse_args(argv)

    setup_logging()
    names = ["evm", "substrate"] if args.backend == "all" else [args.backend]
    # configuration errors end the process here, before any loop starts
    if "evm" in names:
        config.require_evm()
    if "substrate" in names:
        config.require_substrate()

    watchlist = load_watchlist(config.WHITELIST_FILE)
    if not len(watchlist):
        logger.warning("[main] watchlist is empty; no transfers will be retained")
    logger.info(f"[main] THRESHOLD_TOKENS={config.THRESHOLD_TOKENS} (query-side default only)")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    pollers: list = []
    try:
        await asyncio.gather(*(run_backend(n, watchlist, stop, pollers) for n in names))
    finally:
        for p in pollers:
            await p.backend.close()
            p.conn.close()
        logger.info("[main] shut down")

def run():
    uvloop.run(main())

if __name__ == "__main__":
    run()
