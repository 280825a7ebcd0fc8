"""Focus and caret tracking for the editing surface."""

from typing import Iterable, Optional

from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)


class FocusCoordinator:
    """Tracks which block is focused and where the caret goes next.

    ``target_cursor_offset`` is set by structural operations (split, merge,
    create) and consumed exactly once by the editing surface when it binds
    to the newly focused block. While it is set a programmatic navigation is
    pending, and the engine's content wins over any local draft.

    Attributes:
        focused_block_id: Block the editing surface is bound to (None = none)
        target_cursor_offset: Caret offset to apply once, then cleared
        selected_block_ids: Multi-block selection (for batch commands)
    """

    def __init__(self) -> None:
        self.focused_block_id: Optional[str] = None
        self.target_cursor_offset: Optional[int] = None
        self.selected_block_ids: list[str] = []

    @property
    def navigation_pending(self) -> bool:
        return self.target_cursor_offset is not None

    def set_focus(self, block_id: Optional[str], cursor_offset: Optional[int] = None) -> None:
        """Focus a block and optionally request a caret position."""
        self.focused_block_id = block_id
        self.target_cursor_offset = cursor_offset
        logger.debug("focus_changed", block_id=block_id, cursor_offset=cursor_offset)

    def clear(self) -> None:
        self.focused_block_id = None
        self.target_cursor_offset = None

    def consume_cursor_offset(self) -> Optional[int]:
        """Return the pending caret offset and clear it."""
        offset = self.target_cursor_offset
        self.target_cursor_offset = None
        return offset

    def is_focused(self, block_id: str) -> bool:
        return self.focused_block_id == block_id

    def rebind(self, old_id: str, new_id: str) -> None:
        """Follow a block whose id changed (temp id swapped for the real one)."""
        if self.focused_block_id == old_id:
            self.focused_block_id = new_id
        self.selected_block_ids = [new_id if bid == old_id else bid for bid in self.selected_block_ids]

    def forget(self, block_ids: Iterable[str]) -> None:
        """Drop references to blocks that no longer exist."""
        gone = set(block_ids)
        if self.focused_block_id in gone:
            self.clear()
        self.selected_block_ids = [bid for bid in self.selected_block_ids if bid not in gone]

    def select(self, block_ids: Iterable[str]) -> None:
        self.selected_block_ids = list(block_ids)

    def clear_selection(self) -> None:
        self.selected_block_ids = []
