import json, os, pathlib

from loguru import logger


class Checkpoint:
    """
    Last block height fully processed and durably stored, kept as
    {"lastProcessedBlock": <int>} in a small JSON file. 0 means undetermined.
    """

    def __init__(self, path):
        self.path = pathlib.Path(path)
        self.last_processed_block = 0

    @property
    def has_position(self) -> bool:
        return self.last_processed_block > 0

    def load(self) -> int:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            value = int(raw["lastProcessedBlock"])
        except FileNotFoundError:
            value = 0
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.warning(f"[checkpoint] ignoring unreadable {self.path}: {e}")
            value = 0
        self.last_processed_block = max(0, value)
        return self.last_processed_block

    def advance(self, block: int):
        block = int(block)
        if block < self.last_processed_block:
            raise ValueError(
                f"checkpoint cannot move backwards ({self.last_processed_block} -> {block})"
            )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"lastProcessedBlock": block}, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)
        self.last_processed_block = block
