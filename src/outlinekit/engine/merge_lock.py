"""Guard against stale content writes while a merge is in flight."""

from contextlib import contextmanager
from typing import Iterator, Optional

from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)


class MergeGuard:
    """Token held for the duration of one merge.

    Attributes:
        source_id: Block being merged away
        target_id: Block receiving the content (set once known)
    """

    def __init__(self, source_id: str):
        self.source_id = source_id
        self.target_id: Optional[str] = None

    def lock_target(self, target_id: str) -> None:
        self.target_id = target_id

    def covers(self, block_id: str) -> bool:
        return block_id in (self.source_id, self.target_id)


class MergeLock:
    """Registry of active merge guards.

    While a guard is held, content commits addressed to its source or
    target are suppressed so a debounced write cannot clobber the merge
    result. Guards are only obtained through ``acquire``, which releases
    them on every exit path.
    """

    def __init__(self) -> None:
        self._guards: dict[str, MergeGuard] = {}

    def is_merging(self, source_id: str) -> bool:
        """True while a merge of source_id is in flight."""
        return source_id in self._guards

    def suppresses(self, block_id: str) -> bool:
        """True if commits to block_id must be dropped right now."""
        return any(guard.covers(block_id) for guard in self._guards.values())

    @contextmanager
    def acquire(self, source_id: str) -> Iterator[MergeGuard]:
        """Hold the lock for a merge of source_id.

        Raises:
            RuntimeError: If a merge of source_id is already in flight
        """
        if source_id in self._guards:
            raise RuntimeError(f"merge of {source_id} already in progress")

        guard = MergeGuard(source_id)
        self._guards[source_id] = guard
        try:
            yield guard
        finally:
            del self._guards[source_id]
            logger.debug("merge_lock_released", source_id=source_id, target_id=guard.target_id)

    def __len__(self) -> int:
        return len(self._guards)
