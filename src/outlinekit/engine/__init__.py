"""Mutation orchestration for an open page."""

from outlinekit.engine.block_engine import BlockEngine
from outlinekit.engine.drafts import DraftCoordinator
from outlinekit.engine.events import BlockEventBus
from outlinekit.engine.focus import FocusCoordinator
from outlinekit.engine.merge_lock import MergeGuard, MergeLock
from outlinekit.engine.optimistic import ChangeState, OptimisticChange

__all__ = [
    "BlockEngine",
    "BlockEventBus",
    "ChangeState",
    "DraftCoordinator",
    "FocusCoordinator",
    "MergeGuard",
    "MergeLock",
    "OptimisticChange",
]
