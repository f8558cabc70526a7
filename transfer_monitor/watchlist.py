import json, pathlib
from typing import Dict, Iterator, Mapping, Optional

from loguru import logger

from transfer_monitor.helpers import canonical_address


class Watchlist:
    """Read-only address -> label mapping. Labels are cosmetic; membership is what matters."""

    def __init__(self, entries: Optional[Mapping] = None):
        self._labels: Dict[str, str] = {
            canonical_address(k): str(v) for k, v in (entries or {}).items()
        }

    def __contains__(self, addr) -> bool:
        return canonical_address(addr) in self._labels

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def label(self, addr) -> str:
        if not addr: return ""
        return self._labels.get(canonical_address(addr), "")

    def involves(self, from_addr, to_addr) -> bool:
        return from_addr in self or to_addr in self

    def as_dict(self) -> Dict[str, str]:
        return dict(self._labels)


def load_watchlist(path) -> Watchlist:
    """Missing or malformed file degrades to an empty watchlist."""
    p = pathlib.Path(path)
    if not p.exists():
        logger.warning(f"[watchlist] {p} not found; continuing with an empty watchlist")
        return Watchlist()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"[watchlist] failed to parse {p}: {e}")
        return Watchlist()
    if not isinstance(data, dict):
        logger.warning(f"[watchlist] {p} must hold a JSON object, got {type(data).__name__}")
        return Watchlist()
    wl = Watchlist(data)
    logger.info(f"[watchlist] loaded {len(wl)} addresses from {p}")
    return wl
