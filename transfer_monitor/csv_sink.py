import csv, pathlib
from typing import Iterable

from transfer_monitor.models import Transfer

HEADER = [
    "time", "blockNumber", "txHash", "logIndex", "token", "tokenSymbol", "tokenDecimals",
    "from", "fromLabel", "to", "toLabel", "amountTokens", "amountRaw",
]


class CsvSink:
    """
    Legacy append-only CSV of retained EVM transfers. Secondary output only:
    replayed windows may append the same rows again.
    """

    def __init__(self, path):
        self.path = pathlib.Path(path)

    def append(self, transfers: Iterable[Transfer]) -> int:
        rows = [
            [t.time, t.block_number, t.tx_hash or "", t.event_index, t.token or "",
             t.token_symbol, t.token_decimals, t.from_addr, t.from_label, t.to_addr,
             t.to_label, t.amount_text, t.amount_raw]
            for t in transfers
        ]
        if not rows:
            return 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        new_file = not self.path.exists() or self.path.stat().st_size == 0
        with open(self.path, "a", newline="", encoding="utf-8") as f:
            w = csv.writer(f)
            if new_file:
                w.writerow(HEADER)
            w.writerows(rows)
        return len(rows)
