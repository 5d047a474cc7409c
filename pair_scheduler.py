# -*- coding: utf-8 -*-
"""
Plan pairs for a set of dimensions and record exposure once answers come back.

``PairScheduler`` is the only thing the web layer talks to: it seeds the
ledger for the requested dimensions, hands each dimension's snapshot to the
planner, and later turns submitted comparisons into +1 increments.
"""

from __future__ import annotations
import logging, random
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from exposure_ledger import Delta, ExposureLedger, ExposureTable
from pair_planner import Pair, plan_pairs
from survey_errors import InvalidInput

logger = logging.getLogger(__name__)


@dataclass
class Comparison:
    dimension: str
    left: str
    right: str
    choice: str = ""
    pair_index: int | None = None

    @classmethod
    def from_payload(cls, row: Mapping[str, Any]) -> "Comparison":
        """Accept the questionnaire's ``leftImage``/``rightImage`` or ``leftItem``/``rightItem``."""
        if not isinstance(row, Mapping):
            raise InvalidInput(f"comparison must be an object, got {type(row).__name__}")
        dim = row.get("dimension")
        left = row.get("leftImage", row.get("leftItem"))
        right = row.get("rightImage", row.get("rightItem"))
        for name, val in (("dimension", dim), ("left", left), ("right", right)):
            if not isinstance(val, str) or not val:
                raise InvalidInput(f"comparison is missing {name}")
        choice = row.get("choice") or ""
        if choice not in ("", "left", "right"):
            raise InvalidInput(f"choice must be 'left' or 'right', got {choice!r}")
        idx = row.get("pairIndex")
        return cls(dim, left, right, choice, idx if isinstance(idx, int) and not isinstance(idx, bool) else None)


def _clean_dimensions(dimensions: Any) -> List[str]:
    if isinstance(dimensions, str) or not isinstance(dimensions, (list, tuple)) or not dimensions:
        raise InvalidInput("dimensions must be a non-empty list")
    out: List[str] = []
    for d in dimensions:
        if not isinstance(d, str) or not d.strip():
            raise InvalidInput(f"bad dimension name: {d!r}")
        if d not in out:
            out.append(d)
    return out


class PairScheduler:
    def __init__(self, ledger: ExposureLedger, rng: random.Random | None = None,
                 max_pairs_per_dimension: int | None = None):
        self.ledger = ledger
        self.rng = rng or random.Random()
        self.max_pairs_per_dimension = max_pairs_per_dimension

    def plan_pairs(self, dimensions: Sequence[str], item_pool: Sequence[str],
                   pairs_per_dimension: int) -> Dict[str, List[Pair]]:
        dims = _clean_dimensions(dimensions)
        items = list(item_pool)
        if len(set(items)) != len(items):
            raise InvalidInput("item pool contains duplicates")
        k = pairs_per_dimension
        if isinstance(k, bool) or not isinstance(k, int) or k < 0:
            raise InvalidInput(f"pairsPerDimension must be a non-negative int, got {k!r}")
        if self.max_pairs_per_dimension is not None and k > self.max_pairs_per_dimension:
            raise InvalidInput(f"pairsPerDimension must be at most {self.max_pairs_per_dimension}, got {k}")

        counts = self.ledger.ensure(dims, items)
        plan = {dim: plan_pairs(items, counts.get(dim, {}), k, self.rng) for dim in dims}
        short = [d for d, pairs in plan.items() if len(pairs) < k]
        if short:
            logger.warning("Only %d item(s) in pool; short batches for %s", len(items), ", ".join(short))
        return plan

    def record_exposure(self, comparisons: Iterable[Comparison | Mapping[str, Any]],
                        item_pool: Sequence[str] | None = None) -> ExposureTable:
        rows = [c if isinstance(c, Comparison) else Comparison.from_payload(c) for c in comparisons]
        deltas: List[Delta] = []
        for c in rows:
            deltas.append((c.dimension, c.left, 1))
            deltas.append((c.dimension, c.right, 1))
        if item_pool is not None and rows:
            dims = list(dict.fromkeys(c.dimension for c in rows))
            self.ledger.ensure(dims, list(item_pool))
        return self.ledger.commit(deltas)
