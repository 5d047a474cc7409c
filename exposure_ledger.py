# -*- coding: utf-8 -*-
"""
Durable per-dimension exposure counts.

The ledger keeps the whole table in memory and rewrites the JSON file on
every change. All mutations and snapshot reads go through one lock, so two
submissions landing at the same time never lose an increment.
"""

from __future__ import annotations
import copy, json, logging, os, tempfile, threading
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from survey_errors import InvalidInput, PersistenceError

logger = logging.getLogger(__name__)

ExposureTable = Dict[str, Dict[str, int]]
Delta = Tuple[str, str, int]  # (dimension, item, increment)


def read_table(path: Path) -> ExposureTable:
    """Load a table from disk; a missing file is an empty table."""
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        raise PersistenceError(f"cannot read exposure counts from {path}: {e}", path) from e
    if not isinstance(raw, dict):
        raise PersistenceError(f"exposure counts in {path} are not a mapping", path)
    table: ExposureTable = {}
    for dim, per_item in raw.items():
        if not isinstance(per_item, dict):
            raise PersistenceError(f"dimension {dim!r} in {path} is not a mapping", path)
        table[str(dim)] = {}
        for item, n in per_item.items():
            # non-numeric leftovers get re-seeded to 0, same as an unseen item
            if isinstance(n, bool) or not isinstance(n, int) or n < 0:
                logger.warning("Resetting bad count %r for %s/%s", n, dim, item)
                n = 0
            table[str(dim)][str(item)] = n
    return table


def write_table(path: Path, table: ExposureTable) -> None:
    """Atomically replace ``path`` with ``table`` (temp file + fsync + rename)."""
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(table, f, indent=2)  # ascii escapes round-trip surrogate-escaped file names
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except (OSError, ValueError) as e:
        raise PersistenceError(f"cannot write exposure counts to {path}: {e}", path) from e
    finally:
        if tmp_name is not None:
            try: os.unlink(tmp_name)
            except OSError: pass


class ExposureLedger:
    """Owner of the ``dimension -> item -> count`` table.

    One instance per process; every planner call and every submission
    should go through the same object.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._counts: ExposureTable = read_table(self.path)

    def snapshot(self, dimensions: Iterable[str] | None = None) -> ExposureTable:
        with self._lock:
            if dimensions is None:
                return copy.deepcopy(self._counts)
            return {d: dict(self._counts[d]) for d in dimensions if d in self._counts}

    def ensure(self, dimensions: Iterable[str], items: Iterable[str]) -> ExposureTable:
        """Seed unseen (dimension, item) entries at 0 and prune items gone from the pool.

        Returns a snapshot of the whole table. A call that changes nothing
        does not touch the file.
        """
        dims = list(dimensions)
        pool = list(items)
        keep = set(pool)
        with self._lock:
            staged = copy.deepcopy(self._counts)
            seeded = pruned = 0
            for dim in dims:
                per_item = staged.setdefault(dim, {})
                for item in pool:
                    if item not in per_item:
                        per_item[item] = 0
                        seeded += 1
            for dim, per_item in staged.items():
                for item in [i for i in per_item if i not in keep]:
                    del per_item[item]
                    pruned += 1
            if staged != self._counts or not self.path.exists():
                write_table(self.path, staged)
                self._counts = staged
                logger.debug("Ensured %d dimension(s): seeded %d, pruned %d", len(dims), seeded, pruned)
            return copy.deepcopy(self._counts)

    def commit(self, deltas: Iterable[Delta]) -> ExposureTable:
        """Add every increment in one all-or-nothing step and persist it.

        On a failed write the in-memory table keeps its previous state and
        ``PersistenceError`` is raised.
        """
        batch: List[Delta] = []
        for dim, item, inc in deltas:
            if isinstance(inc, bool) or not isinstance(inc, int) or inc < 0:
                raise InvalidInput(f"increment for {dim}/{item} must be a non-negative int, got {inc!r}")
            batch.append((str(dim), str(item), inc))
        with self._lock:
            if not batch:
                return copy.deepcopy(self._counts)
            staged = copy.deepcopy(self._counts)
            for dim, item, inc in batch:
                per_item = staged.setdefault(dim, {})
                per_item[item] = per_item.get(item, 0) + inc
            write_table(self.path, staged)
            self._counts = staged
            logger.info("Committed %d exposure increment(s) to %s", len(batch), self.path.name)
            return copy.deepcopy(self._counts)

    def summary(self) -> List[dict]:
        """Per-dimension spread of exposure, for the admin dashboard."""
        out = []
        for dim, per_item in sorted(self.snapshot().items()):
            vals = list(per_item.values())
            out.append({
                "dimension": dim,
                "items": len(vals),
                "min": min(vals) if vals else 0,
                "max": max(vals) if vals else 0,
                "total": sum(vals),
            })
        return out
