# -*- coding: utf-8 -*-
"""
Greedy, exposure-balancing pair selection for one dimension.

Each step pairs the two least-shown items that have not appeared yet in the
batch. Ties are broken by a fresh shuffle on every step, so the lexically
first image is not always the one picked. When the pool runs out of unused
items the batch is allowed to repeat items instead of stopping short.
"""

from __future__ import annotations
import random
from typing import Dict, List, Mapping, NamedTuple, Sequence, Set

from survey_errors import InvalidInput


class Pair(NamedTuple):
    left: str
    right: str


def rank_by_exposure(working: Mapping[str, int], rng=random) -> List[str]:
    """Items by ascending count; equal counts come out in random order."""
    names = list(working)
    rng.shuffle(names)
    names.sort(key=lambda n: working[n])  # stable: keeps the shuffle inside a tie
    return names


def plan_pairs(items: Sequence[str], counts: Mapping[str, int], k: int, rng=None) -> List[Pair]:
    """Build up to ``k`` pairs for one dimension from a snapshot of ``counts``.

    ``counts`` is never modified; items missing from it count as 0.
    Returns fewer than ``k`` pairs only when the pool has fewer than two items.
    """
    if isinstance(k, bool) or not isinstance(k, int) or k < 0:
        raise InvalidInput(f"batch size must be a non-negative int, got {k!r}")
    if len(set(items)) != len(items):
        raise InvalidInput("item pool contains duplicates")
    if len(items) < 2:
        return []
    rng = rng or random

    working: Dict[str, int] = {it: counts.get(it, 0) for it in items}
    used: Set[str] = set()
    pairs: List[Pair] = []

    for _ in range(k):
        ranked = rank_by_exposure(working, rng)
        cands = [n for n in ranked if n not in used]
        if len(cands) < 2:
            cands = ranked  # allow repeats for this step only
        if len(cands) < 2:
            break
        left = cands[0]
        right = next((n for n in cands[1:] if n != left), None)
        if right is None:
            break
        pairs.append(Pair(left, right))
        working[left] += 1
        working[right] += 1
        used.add(left); used.add(right)
    return pairs
