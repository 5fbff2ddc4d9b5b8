"""
Run dataset
===========
Append-only, content-addressed record store for one crawl run.

Layout::

    <storage_dir>/<random_token>/datasets/<sha256>.json
    <storage_dir>/<random_token>/datasets/index.jsonl

Each record is written once under the SHA-256 of its canonical JSON; the
index keeps insertion order.  This directory is what report generation
reads after the run.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Iterator, List

from .utils import ensure_dir

logger = logging.getLogger(__name__)


class Dataset:
    def __init__(self, storage_dir: str, random_token: str):
        self.path: Path = Path(storage_dir) / random_token / "datasets"
        self.random_token = random_token
        self._lock = threading.Lock()

    @property
    def index_path(self) -> Path:
        return self.path / "index.jsonl"

    def push_data(self, record: dict) -> str:
        """Persist *record*; returns its content key."""
        payload = json.dumps(record, sort_keys=True, ensure_ascii=False, default=str)
        key = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        with self._lock:
            ensure_dir(self.path)
            target = self.path / f"{key}.json"
            if not target.exists():
                target.write_text(payload, encoding="utf-8")
            with open(self.index_path, "a", encoding="utf-8") as fh:
                fh.write(key + "\n")
        logger.debug(f"[DATASET] + {key[:12]} {record.get('url', '')}")
        return key

    def keys(self) -> List[str]:
        if not self.index_path.exists():
            return []
        with open(self.index_path, encoding="utf-8") as fh:
            return [line.strip() for line in fh if line.strip()]

    def records(self) -> Iterator[dict]:
        for key in self.keys():
            with open(self.path / f"{key}.json", encoding="utf-8") as fh:
                yield json.load(fh)

    def __len__(self) -> int:
        return len(self.keys())
