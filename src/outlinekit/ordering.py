"""Sibling ordering keys.

Siblings are ordered by a float ``order_weight``. New weights are computed as
the midpoint of the neighbours they are inserted between, so insertion at the
start, at the end, or between two blocks never renumbers the sibling list.
When repeated halving exhausts float precision the group is rebalanced to
``1.0 .. n`` by whoever owns the authoritative weights (the store).
"""

from typing import Optional, Protocol


# Minimum gap between two neighbours before a group must be rebalanced
MIN_GAP = 1e-10

# Heuristic bounds for the first and last weight of a group
MIN_FIRST_WEIGHT = 1e-5
MAX_LAST_WEIGHT = 1e15


class Weighted(Protocol):
    id: str
    order_weight: float


def between(before: Optional[float], after: Optional[float]) -> float:
    """Compute a weight strictly between two neighbours.

    Args:
        before: Weight of the block the new one goes after (None = start)
        after: Weight of the block the new one goes before (None = end)

    Returns:
        New order weight

    Examples:
        >>> between(None, None)
        1.0
        >>> between(None, 4.0)
        2.0
        >>> between(3.0, None)
        4.0
        >>> between(1.0, 2.0)
        1.5
    """
    if before is None and after is None:
        return 1.0
    if before is None:
        return after / 2.0
    if after is None:
        return before + 1.0
    return (before + after) / 2.0


def needs_rebalancing(before: Optional[float], after: Optional[float]) -> bool:
    """Check whether inserting between two neighbours would lose precision.

    Args:
        before: Weight of the preceding sibling (None = inserting at start)
        after: Weight of the following sibling (None = inserting at end)

    Returns:
        True if the sibling group should be renumbered first
    """
    if before is not None and after is not None:
        return abs(after - before) < MIN_GAP
    if before is None and after is not None:
        return after < MIN_FIRST_WEIGHT
    if before is not None and after is None:
        return before > MAX_LAST_WEIGHT
    return False


def rebalanced(count: int) -> list[float]:
    """Fresh weights ``1.0 .. count`` for a renumbered sibling group."""
    return [float(i) for i in range(1, count + 1)]


def sort_key(block: Weighted) -> tuple[float, str]:
    """Sort key for siblings: weight first, id as a deterministic tiebreaker."""
    return (block.order_weight, block.id)
