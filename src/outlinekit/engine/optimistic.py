"""Two-phase optimistic edits on a tree index.

Phase 1 (``OptimisticChange.apply``) runs synchronously before the first
suspension point: it snapshots every record it is about to touch, applies
the speculative change, and returns a handle. Phase 2 runs after the
gateway answered and either confirms the change with the canonical records
or rolls it back from the snapshot. No other coroutine can observe a
half-applied structural change because phase 1 never awaits.
"""

from enum import Enum
from typing import Iterable, Optional

from outlinekit.models.block import Block
from outlinekit.tree_index import TreeIndex


class ChangeState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class OptimisticChange:
    """Handle for one speculative change.

    Attributes:
        state: Pending until confirm() or rollback() is called
    """

    def __init__(self, index: TreeIndex):
        self._index = index
        self._previous: dict[str, Optional[Block]] = {}
        self._deleted: set[str] = set()
        self.state = ChangeState.PENDING

    @classmethod
    def apply(
        cls,
        index: TreeIndex,
        updated: Iterable[Block] = (),
        deleted_ids: Iterable[str] = (),
    ) -> "OptimisticChange":
        """Phase 1: snapshot and apply a speculative change.

        Args:
            index: Index to change
            updated: Speculative new/replacement records
            deleted_ids: Ids to remove speculatively

        Returns:
            Handle used to confirm or roll back the change
        """
        updated = list(updated)
        deleted_ids = list(deleted_ids)

        change = cls(index)
        for block_id in [*deleted_ids, *(block.id for block in updated)]:
            change._previous.setdefault(block_id, index.get(block_id))
        change._deleted.update(deleted_ids)

        index.apply(updated=updated, deleted_ids=deleted_ids)
        return change

    def confirm(self, updated: Iterable[Block] = (), deleted_ids: Iterable[str] = ()) -> None:
        """Phase 2 (success): adopt the canonical records from the store.

        Records the store did not mention keep their speculative value.
        Records deleted from the index by another operation while this one
        was in flight are not brought back.
        """
        self._ensure_pending()
        live = [block for block in updated if not self._vanished(block.id)]
        self._index.apply(updated=live, deleted_ids=deleted_ids)
        self.state = ChangeState.CONFIRMED

    def rollback(self) -> None:
        """Phase 2 (failure): restore every record touched in phase 1.

        Like confirm(), this never resurrects a record that another
        operation deleted in the meantime.
        """
        self._ensure_pending()
        restored = [
            block for block_id, block in self._previous.items()
            if block is not None and not self._vanished(block_id)
        ]
        created = [block_id for block_id, block in self._previous.items() if block is None]
        self._index.apply(updated=restored, deleted_ids=created)
        self.state = ChangeState.ROLLED_BACK

    def _vanished(self, block_id: str) -> bool:
        """True if block_id was placed in the index in phase 1 and is gone now."""
        return block_id in self._previous and block_id not in self._deleted and block_id not in self._index

    def _ensure_pending(self) -> None:
        if self.state is not ChangeState.PENDING:
            raise RuntimeError(f"optimistic change already {self.state.value}")
