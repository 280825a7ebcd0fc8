"""Local draft buffers for the editing surface.

The editing surface types into a draft, not into the engine. Drafts reach
the engine only at commit points: after an idle period (debounced), on
blur, and right before a structural operation that reads content (split
and merge hand the live draft to the engine directly).
"""

import asyncio
from collections import defaultdict
from typing import Optional

from outlinekit.engine.block_engine import BlockEngine
from outlinekit.exceptions import PersistenceFailure, ValidationError
from outlinekit.models.events import BlocksChanged
from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)


class DraftCoordinator:
    """Keeps the focused block's live text and decides when it is committed.

    When the engine reports a change to the focused block, the local draft
    wins (the user is typing) unless a programmatic navigation is pending,
    in which case the engine's content wins and the draft is resynced.
    Drafts of other blocks are resynced unless they still await their idle
    commit.

    Example:
        >>> drafts = DraftCoordinator(engine, debounce_seconds=0.3)
        >>> text, caret = drafts.begin_editing(block_id)
        >>> drafts.input(block_id, text + "!")
        >>> await drafts.blur()
    """

    def __init__(self, engine: BlockEngine, debounce_seconds: float = 0.3):
        self.engine = engine
        self.debounce_seconds = debounce_seconds
        self._drafts: dict[str, str] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._unsubscribe = engine.events.subscribe(self._on_blocks_changed)

    def begin_editing(self, block_id: str) -> tuple[str, Optional[int]]:
        """Bind the editing surface to a block.

        Returns:
            (text to show, caret offset to apply once or None)
        """
        block_id = self.engine.resolve_id(block_id)
        block = self.engine.get_block(block_id)
        if block is None:
            raise ValidationError(f"Block {block_id} not found", block_id=block_id)

        if not self.engine.focus.is_focused(block_id):
            self.engine.focus.set_focus(block_id)

        if self.engine.focus.navigation_pending or block_id not in self._drafts:
            self._drafts[block_id] = block.content
        return self._drafts[block_id], self.engine.focus.consume_cursor_offset()

    def input(self, block_id: str, text: str) -> None:
        """Record a keystroke's worth of text and restart the idle timer."""
        self._drafts[block_id] = text
        self._schedule_commit(block_id)

    def draft(self, block_id: str) -> Optional[str]:
        return self._drafts.get(block_id)

    def live_content(self, block_id: str) -> Optional[str]:
        """Draft text if one exists, otherwise the engine's content."""
        if block_id in self._drafts:
            return self._drafts[block_id]
        block = self.engine.get_block(block_id)
        return block.content if block else None

    async def commit(self, block_id: str) -> bool:
        """Flush a block's draft to the engine.

        Skipped while the block is part of an in-flight merge, when the block
        no longer exists, or when the draft matches the engine's content.

        Returns:
            True if a write was issued
        """
        self._cancel_timer(block_id)
        async with self._locks[block_id]:
            draft = self._drafts.get(block_id)
            if draft is None:
                return False

            real_id = self.engine.resolve_id(block_id)
            if self.engine.merge_lock.suppresses(real_id):
                logger.debug("draft_commit_suppressed", block_id=real_id)
                return False

            block = self.engine.get_block(real_id)
            if block is None:
                self._drafts.pop(block_id, None)
                return False
            if draft == block.content:
                return False

            await self.engine.update_block_content(real_id, draft)
            return True

    async def blur(self) -> None:
        """The editing surface lost focus: commit and drop the draft."""
        block_id = self.engine.focus.focused_block_id
        if block_id is None:
            return

        await self.commit(block_id)
        self._drafts.pop(block_id, None)
        if self.engine.focus.is_focused(block_id):
            self.engine.focus.clear()

    async def split(self, block_id: str, offset: int) -> str:
        """Enter key: split the live text at offset."""
        self._cancel_timer(block_id)
        new_id = await self.engine.split_at_cursor(block_id, offset, self._drafts.get(block_id))
        self._drafts.pop(block_id, None)
        return new_id

    async def merge_with_previous(self, block_id: str) -> Optional[str]:
        """Backspace at offset 0: merge the live text into the previous block."""
        self._cancel_timer(block_id)
        target_id = await self.engine.merge_with_previous(block_id, self._drafts.get(block_id))
        if self.engine.get_block(block_id) is None:
            self._drafts.pop(block_id, None)
        return target_id

    async def close(self) -> None:
        """Commit every outstanding draft and detach from the engine."""
        for block_id in list(self._drafts):
            await self.commit(block_id)
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
        self._drafts.clear()
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Internals

    def _schedule_commit(self, block_id: str) -> None:
        self._cancel_timer(block_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the draft waits for blur or an explicit commit
            return
        self._timers[block_id] = loop.create_task(self._idle_commit(block_id))

    def _cancel_timer(self, block_id: str) -> None:
        task = self._timers.pop(block_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _idle_commit(self, block_id: str) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._timers.pop(block_id, None)
        try:
            await self.commit(block_id)
        except (PersistenceFailure, ValidationError) as e:
            # Nobody awaits this task; the engine has already reloaded
            logger.error("idle_commit_failed", block_id=block_id, error=str(e))

    def _on_blocks_changed(self, event: BlocksChanged) -> None:
        focus = self.engine.focus
        for block in event.updated_or_created:
            if block.id not in self._drafts:
                continue
            if focus.is_focused(block.id):
                stale = focus.navigation_pending
            else:
                # Unfocused drafts with no pending commit hold nothing new
                stale = block.id not in self._timers
            if stale:
                self._drafts[block.id] = block.content
                self._cancel_timer(block.id)

        for block_id in event.deleted_ids:
            self._drafts.pop(block_id, None)
            self._cancel_timer(block_id)
