"""JSONL snapshot writer."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


class JsonlSink:
    """Rewrites the whole file on every save.

    Records go to a temporary sibling first and replace the target in one
    rename, so readers only ever see a complete snapshot.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def write(self, records: Iterable) -> int:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        count = 0
        with open(tmp, "w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record.to_json(), ensure_ascii=False))
                f.write("\n")
                count += 1
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)
        logger.debug("Wrote %d records to %s", count, self.path)
        return count

    def read(self) -> list[dict]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
