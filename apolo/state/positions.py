"""Fractional order keys for sibling lists.

Siblings are ordered by a float ``position``. A node placed between two
neighbours takes the midpoint of their keys, so no sibling is ever
renumbered. Repeated insertion at the same boundary halves the gap each time
until floats run out of precision; when the midpoint collapses onto a
neighbour the key falls back to ``prev + epsilon``. Keys are never
renormalised.
"""
import enum
import math
import time
from typing import List, Optional, Sequence

from ..config import POSITION_EPSILON, POSITION_GAP


class Placement(str, enum.Enum):
    BEFORE = "before"
    AFTER = "after"
    INSIDE = "inside"


def epoch_baseline() -> float:
    """Starting key for an empty list: wall clock in seconds."""
    return time.time()


def _key(position: Optional[float]) -> float:
    return position if position is not None else 0.0


def between(
    prev: Optional[float],
    next_: Optional[float],
    *,
    has_prev: bool = True,
    has_next: bool = True,
    gap: float = POSITION_GAP,
    epsilon: float = POSITION_EPSILON,
) -> float:
    """Key for a slot between two neighbours.

    ``has_prev``/``has_next`` say whether the neighbour exists at all; an
    existing neighbour with a null key counts as 0.
    """
    if not has_prev:
        base = _key(next_) if has_next else epoch_baseline()
        return base - gap
    prev_key = _key(prev)
    if not has_next:
        return prev_key + gap

    next_key = _key(next_)
    key = (prev_key + next_key) / 2
    if key == prev_key or key == next_key:
        key = prev_key + epsilon
        if key <= prev_key:
            # epsilon is below one ulp at this magnitude
            key = math.nextafter(prev_key, math.inf)
        if key == next_key:
            key = math.nextafter(next_key, math.inf)
    return key


def position_at(siblings: Sequence, index: int, **kwargs) -> float:
    """Key for a node about to be inserted at ``index`` of ``siblings``.

    ``siblings`` must not contain the node being placed. Items only need a
    ``position`` attribute, so this serves tasks and projects alike.
    """
    has_prev = index > 0
    has_next = index < len(siblings)
    prev = siblings[index - 1].position if has_prev else None
    next_ = siblings[index].position if has_next else None
    return between(prev, next_, has_prev=has_prev, has_next=has_next, **kwargs)


def append_position(siblings: Sequence, **kwargs) -> float:
    """Key for a new last sibling (the epoch baseline when there is none)."""
    if not siblings:
        return epoch_baseline()
    return position_at(siblings, len(siblings), **kwargs)


def inside_position(children: List, gap: float = POSITION_GAP) -> float:
    """Key for a node dropped onto a parent, becoming its first child.

    Half of the current first child's key, or ``gap`` when the parent has no
    children. Halving only moves a key down when it is positive; otherwise
    the key steps one gap below the first child.
    """
    if not children:
        return gap
    first = _key(children[0].position)
    key = first / 2
    if key >= first:
        key = first - gap
    return key
