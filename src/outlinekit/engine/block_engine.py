"""Block engine: the mutation orchestrator for one open page.

Every mutation follows the same shape:

1. Validate the request against the tree index (``ValidationError``, no
   state change).
2. Apply the speculative result to the index synchronously.
3. Await the gateway.
4. Adopt the canonical records on success, or roll back and reload the
   page on failure, then re-raise as ``PersistenceFailure``.
5. Broadcast a ``BlocksChanged`` event.

Multi-step operations (split, merge, batch create) never guess which half
of a failed sequence landed: any failure reloads the whole page.
"""

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Iterable, Optional, TypeVar

from outlinekit import ordering
from outlinekit.engine.events import BlockEventBus
from outlinekit.engine.focus import FocusCoordinator
from outlinekit.engine.merge_lock import MergeLock
from outlinekit.engine.optimistic import OptimisticChange
from outlinekit.exceptions import InvariantViolation, PersistenceFailure, ValidationError
from outlinekit.gateway.base import BlockGateway
from outlinekit.models.block import Block, BlockType, NewBlock, utc_now
from outlinekit.models.events import BlocksChanged
from outlinekit.outline import outline_to_new_blocks, parse_outline
from outlinekit.tree_index import ROOT, InsertTarget, TreeIndex, VisibleBlock
from outlinekit.utils.ids import generate_temp_id, is_temp_id
from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


class BlockEngine:
    """Owns the tree index, focus state and merge lock of one open page.

    Construct one engine per page, ``await open()`` it, and ``close()`` it
    when the page is closed. All other components (editing surface, batch
    commands, automation tools) go through the public methods below; none
    of them mutate ``index`` directly.

    Attributes:
        gateway: Client for the authoritative block store
        page_id: Page this engine edits
        index: Tree index of the page's blocks
        focus: Focused block and pending caret offset
        merge_lock: Guards blocks involved in an in-flight merge
        events: Fan-out of BlocksChanged notifications

    Example:
        >>> engine = BlockEngine(gateway, "page-1")
        >>> await engine.open()
        >>> new_id = await engine.split_at_cursor(block_id, 5)
    """

    def __init__(self, gateway: BlockGateway, page_id: str):
        self.gateway = gateway
        self.page_id = page_id
        self.index = TreeIndex()
        self.focus = FocusCoordinator()
        self.merge_lock = MergeLock()
        self.events = BlockEventBus()
        self.is_open = False
        self._temp_ids: dict[str, str] = {}
        self._pending_content: dict[str, str] = {}
        self._write_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.log = logger.bind(page_id=page_id)

    # ------------------------------------------------------------------
    # Page lifecycle

    async def open(self) -> None:
        """Load the page; an empty page gets its first block right away.

        Raises:
            PersistenceFailure: If the page cannot be loaded
            InvariantViolation: If the store returned an inconsistent tree
        """
        await self.reload()
        self.is_open = True
        self.log.info("page_opened", block_count=len(self.index))

        if len(self.index) == 0:
            await self._create_first_block("")

    async def reload(self) -> None:
        """Replace the index with a fresh copy of the page from the store.

        Raises:
            PersistenceFailure: If the page cannot be loaded
            InvariantViolation: If the store returned an inconsistent tree
        """
        blocks = await self._call("load_page_blocks", self.gateway.load_page_blocks(self.page_id))
        index = TreeIndex.build(blocks)
        try:
            index.verify()
        except InvariantViolation as e:
            self.log.error("page_load_inconsistent", error=str(e))
            raise

        # Swapped in place: changes still in flight hold a reference to the index
        self.index.blocks_by_id = index.blocks_by_id
        self.index.children_by_parent = index.children_by_parent
        self.focus.forget([bid for bid in self._known_ids() if bid not in index])
        self.log.debug("page_reloaded", block_count=len(index))

    def close(self) -> None:
        """Tear down the engine; it must not be used afterwards."""
        self.events.clear()
        self.focus.clear()
        self.focus.clear_selection()
        self.index = TreeIndex()
        self._temp_ids.clear()
        self._pending_content.clear()
        self._write_locks.clear()
        self.is_open = False
        self.log.info("page_closed")

    # ------------------------------------------------------------------
    # Reading

    def get_block(self, block_id: str) -> Optional[Block]:
        return self.index.get(self.resolve_id(block_id))

    def get_children(self, parent_id: Optional[str]) -> list[str]:
        return self.index.children(parent_id)

    def root_block_ids(self) -> list[str]:
        return self.index.root_ids()

    def previous_visible_block(self, block_id: str) -> Optional[str]:
        return self.index.previous_visible(self.resolve_id(block_id))

    def next_block(self, block_id: str) -> Optional[str]:
        return self.index.next_visible(self.resolve_id(block_id))

    def visible_blocks(self) -> list[VisibleBlock]:
        return self.index.visible_blocks()

    def resolve_id(self, block_id: str) -> str:
        """Map a swapped-out temp id to the real id (other ids unchanged)."""
        return self._temp_ids.get(block_id, block_id)

    # ------------------------------------------------------------------
    # Creation

    async def create_block(
        self,
        after_block_id: Optional[str] = None,
        content: str = "",
        block_type: BlockType = BlockType.BULLET,
    ) -> str:
        """Create a block below after_block_id using the insert-below rule.

        With no reference block the new block goes first at root level; on
        an empty page it becomes the page's first block.

        Args:
            after_block_id: Reference block (None = top of the page)
            content: Initial content
            block_type: Initial block type

        Returns:
            Id of the new block (focused, caret at 0)

        Raises:
            ValidationError: If after_block_id does not exist
            PersistenceFailure: If the store rejected the creation
        """
        if after_block_id is None and len(self.index) == 0:
            return await self._create_first_block(content)

        if after_block_id is not None:
            self._require(after_block_id, settled=True)
            target = self.index.insert_below_target(after_block_id)
        else:
            target = InsertTarget(parent_id=ROOT, after_block_id=None)

        try:
            block = await self._create_at(target, content, block_type)
        except PersistenceFailure:
            await self._recover("create_block")
            raise

        self.index.apply(updated=[block])
        await self._settle_placement([(block, target.after_block_id)])
        self.focus.set_focus(block.id, 0)
        self.log.info("block_created", block_id=block.id, parent_id=block.parent_id)
        self._emit(updated=[block])
        return block.id

    async def _create_first_block(self, content: str) -> str:
        """Optimistic creation of the first block of an empty page.

        A placeholder with a temp id is inserted and focused before the
        first suspension point, so the editing surface has somewhere to type
        immediately. Content written to the placeholder meanwhile is queued
        and persisted against the real id once the store answers.
        """
        temp_id = generate_temp_id()
        now = utc_now()
        placeholder = Block(
            id=temp_id,
            page_id=self.page_id,
            parent_id=None,
            content=content,
            order_weight=ordering.between(None, None),
            created_at=now,
            updated_at=now,
        )
        change = OptimisticChange.apply(self.index, updated=[placeholder])
        self.focus.set_focus(temp_id, 0)

        try:
            block = await self._call(
                "create_block",
                self.gateway.create_block(self.page_id, None, None, content),
            )
        except PersistenceFailure:
            change.rollback()
            self.focus.forget([temp_id])
            self._pending_content.pop(temp_id, None)
            self.log.error("first_block_creation_failed", temp_id=temp_id)
            raise

        self.index.replace_id(temp_id, block)
        change.confirm()
        self._temp_ids[temp_id] = block.id
        self.focus.rebind(temp_id, block.id)
        self.log.info("first_block_created", block_id=block.id, temp_id=temp_id)
        self._emit(updated=[block])

        latest = self._pending_content.pop(temp_id, None)
        if latest is not None and latest != block.content:
            await self.update_block_content(block.id, latest)
        return block.id

    async def create_blocks_batch(
        self,
        after_block_id: Optional[str],
        blocks: Iterable[NewBlock],
    ) -> list[str]:
        """Create a (possibly nested) list of blocks in one logical operation.

        The first top-level block goes below after_block_id by the
        insert-below rule (or at the end of the page when None); the others
        follow it in order, children nested under their parents.

        Args:
            after_block_id: Reference block (None = append at end of page)
            blocks: Blocks to create

        Returns:
            Ids of all created blocks, in document order

        Raises:
            ValidationError: If after_block_id does not exist
            PersistenceFailure: If any creation failed (the page is reloaded)
        """
        blocks = list(blocks)
        if not blocks:
            return []

        if after_block_id is not None:
            self._require(after_block_id, settled=True)
            target = self.index.insert_below_target(after_block_id)
        else:
            roots = self.index.root_ids()
            target = InsertTarget(parent_id=ROOT, after_block_id=roots[-1] if roots else None)

        created: list[Block] = []
        placements: list[tuple[Block, Optional[str]]] = []

        async def create_level(nodes: list[NewBlock], place: InsertTarget) -> None:
            for node in nodes:
                block = await self._create_at(place, node.content, node.block_type)
                created.append(block)
                placements.append((block, place.after_block_id))
                if node.children:
                    await create_level(node.children, InsertTarget(parent_id=block.id, after_block_id=None))
                place = InsertTarget(parent_id=place.parent_id, after_block_id=block.id)

        try:
            await create_level(blocks, target)
        except PersistenceFailure:
            self.log.error("batch_create_failed", created_before_failure=len(created))
            await self._recover("create_blocks_batch")
            raise

        self.index.apply(updated=created)
        await self._settle_placement(placements)
        self.log.info("blocks_created_batch", count=len(created), after_block_id=after_block_id)
        self._emit(updated=created)
        await self._check_invariants()
        return [block.id for block in created]

    async def create_blocks_from_markdown(self, after_block_id: Optional[str], markdown: str) -> list[str]:
        """Import an indented markdown bullet list below after_block_id.

        Raises:
            ValidationError: If the markdown holds no bullets
            PersistenceFailure: If any creation failed (the page is reloaded)
        """
        nodes = parse_outline(markdown)
        if not nodes:
            raise ValidationError("Markdown contains no bullet blocks")
        return await self.create_blocks_batch(after_block_id, outline_to_new_blocks(nodes))

    async def _create_at(self, target: InsertTarget, content: str, block_type: BlockType) -> Block:
        return await self._call(
            "create_block",
            self.gateway.create_block(
                self.page_id, target.parent_id, target.after_block_id, content, block_type
            ),
        )

    # ------------------------------------------------------------------
    # Content and metadata

    async def update_block_content(self, block_id: str, content: str) -> None:
        """Commit new content for a block.

        Suppressed while the block is part of an in-flight merge. For a
        block still being created the content is applied locally and queued
        until the real id is known.

        Raises:
            ValidationError: If the block does not exist
            PersistenceFailure: If the store rejected the update (page reloaded)
        """
        block_id = self.resolve_id(block_id)
        if self.merge_lock.suppresses(block_id):
            self.log.warning("content_commit_suppressed", block_id=block_id)
            return

        block = self._require(block_id)
        if is_temp_id(block_id):
            self._pending_content[block_id] = content
            self.index.apply(updated=[block.model_copy(update={"content": content})])
            return

        if content == block.content:
            return

        try:
            updated = await self._write("update_block", block_id, content=content)
        except PersistenceFailure:
            await self._recover("update_block_content")
            raise

        self.log.debug("block_content_updated", block_id=block_id, length=len(content))
        self._emit(updated=[updated])

    async def update_block(
        self,
        block_id: str,
        metadata: Optional[dict[str, str]] = None,
        block_type: Optional[BlockType] = None,
        language: Optional[str] = None,
    ) -> Block:
        """Patch non-content fields of a block.

        Raises:
            ValidationError: If the block does not exist or nothing is patched
            PersistenceFailure: If the store rejected the update (page reloaded)
        """
        self._require(block_id, settled=True)
        if metadata is None and block_type is None and language is None:
            raise ValidationError("Nothing to update", block_id=block_id)

        try:
            updated = await self._write(
                "update_block", block_id, metadata=metadata, block_type=block_type, language=language
            )
        except PersistenceFailure:
            await self._recover("update_block")
            raise

        self.log.info("block_updated", block_id=block_id, block_type=updated.block_type.value)
        self._emit(updated=[updated])
        return updated

    async def _write(self, operation: str, block_id: str, **changes: Any) -> Block:
        """Optimistically patch a block and persist it; roll back on failure.

        Writes to one block are sequenced by a per-block lock, which is also
        what a merge waits on before handing the block to the store.
        """
        changes = {key: value for key, value in changes.items() if value is not None}
        async with self._write_locks[block_id]:
            block = self.index.get(block_id)
            if block is None:
                raise ValidationError(f"Block {block_id} no longer exists", block_id=block_id)

            change = OptimisticChange.apply(self.index, updated=[block.model_copy(update=changes)])
            try:
                canonical = await self._call(operation, self.gateway.update_block(block_id, **changes))
            except PersistenceFailure:
                change.rollback()
                raise
            change.confirm(updated=[canonical])
            return canonical

    async def _wait_for_writes(self, *block_ids: str) -> None:
        """Wait until no write to any of the given blocks is in flight."""
        for block_id in block_ids:
            async with self._write_locks[block_id]:
                pass

    # ------------------------------------------------------------------
    # Deletion

    async def delete_block(self, block_id: str) -> list[str]:
        """Delete a block and all of its descendants.

        Refused (no-op, empty result) when it would leave the page without
        blocks. If the focused block goes away, focus moves to the previous
        visible block.

        Returns:
            Ids of every deleted block ([] when refused)

        Raises:
            ValidationError: If the block does not exist
            PersistenceFailure: If the store rejected the deletion (page reloaded)
        """
        self._require(block_id, settled=True)
        subtree = self.index.subtree_ids(block_id)
        if len(subtree) >= len(self.index):
            self.log.info("delete_refused_last_block", block_id=block_id)
            return []

        next_focus = None
        if self.focus.focused_block_id in subtree:
            next_focus = self.index.previous_visible(block_id)

        change = OptimisticChange.apply(self.index, deleted_ids=subtree)
        try:
            deleted = await self._call("delete_block", self.gateway.delete_block(block_id))
        except PersistenceFailure:
            change.rollback()
            await self._recover("delete_block")
            raise

        change.confirm(deleted_ids=deleted)
        self.focus.forget([*subtree, *deleted])
        if next_focus is not None and next_focus in self.index:
            self.focus.set_focus(next_focus, len(self.index.get(next_focus).content))

        self.log.info("block_deleted", block_id=block_id, deleted_count=len(deleted))
        self._emit(deleted_ids=deleted)

        survivors = set(subtree) - set(deleted)
        if survivors:
            self.log.warning("delete_response_incomplete", missing=sorted(survivors))
            await self._recover("delete_block")
        return deleted

    # ------------------------------------------------------------------
    # Split and merge

    async def split_at_cursor(self, block_id: str, offset: int, draft: Optional[str] = None) -> str:
        """Split a block's text at offset (the Enter key).

        ``draft`` is the editing surface's live text, which may be ahead of
        the persisted content; it is the split source when given. The text
        before the cursor is persisted first, then the text after it becomes
        a new block placed by the insert-below rule.

        Returns:
            Id of the new block (focused, caret at 0)

        Raises:
            ValidationError: If the block does not exist or offset is out of range
            PersistenceFailure: If either step failed (page reloaded)
        """
        block = self._require(block_id, settled=True)
        source = draft if draft is not None else block.content
        if not 0 <= offset <= len(source):
            raise ValidationError(
                f"Cursor offset {offset} outside content of length {len(source)}", block_id=block_id
            )

        before, after = source[:offset], source[offset:]
        target = self.index.insert_below_target(block_id)

        try:
            kept = block
            if before != block.content:
                kept = await self._write("update_block", block_id, content=before)
            created = await self._create_at(target, after, BlockType.BULLET)
        except PersistenceFailure:
            await self._recover("split_at_cursor")
            raise

        self.index.apply(updated=[created])
        await self._settle_placement([(created, target.after_block_id)])
        self.focus.set_focus(created.id, 0)
        self.log.info("block_split", block_id=block_id, new_block_id=created.id, offset=offset)
        self._emit(updated=[kept, created])
        return created.id

    async def merge_with_previous(self, block_id: str, draft: Optional[str] = None) -> Optional[str]:
        """Merge a block into the previous visible block (Backspace at start).

        A block whose effective content is empty is deleted (with its
        children), unless it is the last block of the page, and focus moves
        to the previous block. Otherwise the store appends the block's text
        to the previous block and moves its children there in one atomic
        call. Focus lands on the previous block with the caret at its
        pre-merge length.

        Writes to either block that are already in flight are awaited before
        the merge is sent; writes issued after the merge started are
        suppressed. Calls for a block whose merge is already in flight are
        ignored.

        Returns:
            Id of the previous block, or None when there is none or nothing
            happened

        Raises:
            ValidationError: If the block does not exist
            PersistenceFailure: If the merge failed (page reloaded, focus restored)
        """
        block_id = self.resolve_id(block_id)
        if self.merge_lock.is_merging(block_id):
            self.log.debug("merge_already_in_progress", block_id=block_id)
            return None

        block = self._require(block_id, settled=True)
        content = draft if draft is not None else block.content
        target_id = self.index.previous_visible(block_id)

        if content == "":
            with self.merge_lock.acquire(block_id) as guard:
                if target_id is not None:
                    guard.lock_target(target_id)
                await self._wait_for_writes(block_id)
                deleted = await self.delete_block(block_id)
            if not deleted:
                return None
            if target_id is not None and target_id in self.index:
                self.focus.set_focus(target_id, len(self.index.get(target_id).content))
            return target_id

        if target_id is None:
            return None
        return await self._merge(block_id, target_id, draft)

    async def merge_into(self, block_id: str, target_id: str) -> str:
        """Merge a block into an arbitrary target block.

        The store appends the block's text to the target and moves its
        children there, as for a Backspace merge, but the target is chosen
        by the caller and empty blocks are merged rather than deleted.

        Returns:
            Id of the target block

        Raises:
            ValidationError: If either block does not exist, they are the
                same block, the target lies inside the merged subtree, or a
                merge of either block is already in flight
            PersistenceFailure: If the merge failed (page reloaded, focus restored)
        """
        block_id = self.resolve_id(block_id)
        target_id = self.resolve_id(target_id)
        self._require(block_id, settled=True)
        self._require(target_id, settled=True)
        if target_id in self.index.subtree_ids(block_id):
            raise ValidationError("Cannot merge a block into itself or its own subtree", block_id=block_id)
        if self.merge_lock.is_merging(block_id) or self.merge_lock.is_merging(target_id):
            raise ValidationError(f"Block {block_id} is already being merged", block_id=block_id)

        merged = await self._merge(block_id, target_id, None)
        if merged is None:
            raise ValidationError(f"Block {block_id} was removed before the merge", block_id=block_id)
        return merged

    async def _merge(self, block_id: str, target_id: str, draft: Optional[str]) -> Optional[str]:
        """Hand a block to the store for merging once its writes have landed."""
        with self.merge_lock.acquire(block_id) as guard:
            guard.lock_target(target_id)
            await self._wait_for_writes(block_id, target_id)

            block = self.index.get(block_id)
            target = self.index.get(target_id)
            if block is None or target is None:
                self.log.warning("merge_abandoned", block_id=block_id, target_id=target_id)
                return None

            cursor = len(target.content)
            try:
                if draft is not None and draft != block.content:
                    await self._write("update_block", block_id, content=draft)
                changed = await self._call("merge_blocks", self.gateway.merge_blocks(block_id, target_id))
            except PersistenceFailure:
                await self._recover_merge(block_id, target_id)
                raise

            self.index.apply(updated=changed, deleted_ids=[block_id])
            self.focus.forget([block_id])
            self.focus.set_focus(target_id, cursor)
            self.log.info(
                "blocks_merged", block_id=block_id, target_id=target_id, moved_children=len(changed) - 1
            )
            self._emit(updated=changed, deleted_ids=[block_id])

        await self._check_invariants()
        return target_id

    async def _recover_merge(self, block_id: str, target_id: str) -> None:
        """Reload after a failed merge and re-focus from fresh state."""
        self.focus.clear()
        await self._recover("merge_with_previous")

        if block_id in self.index:
            self.focus.set_focus(block_id)
        elif target_id in self.index:
            self.focus.set_focus(target_id)
        else:
            roots = self.index.root_ids()
            self.focus.set_focus(roots[0] if roots else None)

    # ------------------------------------------------------------------
    # Structure

    async def indent_block(self, block_id: str) -> Optional[Block]:
        """Make a block the last child of its previous sibling (Tab).

        Returns:
            The updated block, or None when there is no previous sibling

        Raises:
            ValidationError: If the block does not exist
            PersistenceFailure: If the store rejected the change (page reloaded)
        """
        block = self._require(block_id, settled=True)
        new_parent_id = self.index.previous_sibling(block_id)
        if new_parent_id is None:
            self.log.debug("indent_skipped_no_previous_sibling", block_id=block_id)
            return None

        children = self.index.children(new_parent_id)
        last_weight = self.index.get(children[-1]).order_weight if children else None
        speculative = block.model_copy(
            update={"parent_id": new_parent_id, "order_weight": ordering.between(last_weight, None)}
        )

        updated = await self._single_record_op(
            "indent_block",
            speculative,
            self.gateway.indent_block(block_id),
            placement=InsertTarget(parent_id=new_parent_id, after_block_id=children[-1] if children else None),
        )
        self.log.info("block_indented", block_id=block_id, new_parent_id=updated.parent_id)
        return updated

    async def outdent_block(self, block_id: str) -> Optional[Block]:
        """Make a block the sibling right after its former parent (Shift+Tab).

        Returns:
            The updated block, or None when already at root level

        Raises:
            ValidationError: If the block does not exist
            PersistenceFailure: If the store rejected the change (page reloaded)
        """
        block = self._require(block_id, settled=True)
        if block.parent_id is None:
            self.log.debug("outdent_skipped_at_root", block_id=block_id)
            return None

        parent = self.index.get(block.parent_id)
        following = self.index.next_sibling(parent.id)
        following_weight = self.index.get(following).order_weight if following else None
        speculative = block.model_copy(
            update={
                "parent_id": parent.parent_id,
                "order_weight": ordering.between(parent.order_weight, following_weight),
            }
        )

        updated = await self._single_record_op(
            "outdent_block",
            speculative,
            self.gateway.outdent_block(block_id),
            placement=InsertTarget(parent_id=parent.parent_id, after_block_id=parent.id),
        )
        self.log.info("block_outdented", block_id=block_id, new_parent_id=updated.parent_id)
        return updated

    async def move_block(
        self,
        block_id: str,
        new_parent_id: Optional[str],
        after_block_id: Optional[str],
    ) -> Block:
        """Reparent/reorder a block with its subtree (drag and drop).

        Args:
            block_id: Block to move
            new_parent_id: Destination parent (None = root level)
            after_block_id: Sibling to land after (None = first position)

        Raises:
            ValidationError: If an id does not exist, the destination is inside
                the moved subtree, or after_block_id is not a child of the
                destination
            PersistenceFailure: If the store rejected the move (page reloaded)
        """
        block = self._require(block_id, settled=True)
        if new_parent_id is not None:
            self._require(new_parent_id, settled=True)
            if new_parent_id in self.index.subtree_ids(block_id):
                raise ValidationError("Cannot move a block into its own subtree", block_id=block_id)

        siblings = [sid for sid in self.index.children(new_parent_id) if sid != block_id]
        if after_block_id is not None:
            self._require(after_block_id, settled=True)
            if after_block_id not in siblings:
                raise ValidationError(
                    f"Block {after_block_id} is not a child of {new_parent_id or 'the page root'}",
                    block_id=block_id,
                )
            position = siblings.index(after_block_id) + 1
        else:
            position = 0

        before_weight = self.index.get(siblings[position - 1]).order_weight if position > 0 else None
        after_weight = self.index.get(siblings[position]).order_weight if position < len(siblings) else None
        speculative = block.model_copy(
            update={"parent_id": new_parent_id, "order_weight": ordering.between(before_weight, after_weight)}
        )

        updated = await self._single_record_op(
            "move_block",
            speculative,
            self.gateway.move_block(block_id, new_parent_id, after_block_id),
            placement=InsertTarget(parent_id=new_parent_id, after_block_id=after_block_id),
        )
        self.log.info("block_moved", block_id=block_id, new_parent_id=new_parent_id, after_block_id=after_block_id)
        return updated

    async def toggle_collapse(self, block_id: str) -> Block:
        """Flip a block's collapsed flag; its children stay in storage.

        Raises:
            ValidationError: If the block does not exist
            PersistenceFailure: If the store rejected the change (page reloaded)
        """
        block = self._require(block_id, settled=True)
        speculative = block.model_copy(update={"is_collapsed": not block.is_collapsed})
        updated = await self._single_record_op(
            "toggle_collapse", speculative, self.gateway.toggle_collapse(block_id)
        )
        self.log.info("block_collapse_toggled", block_id=block_id, is_collapsed=updated.is_collapsed)
        return updated

    async def _single_record_op(
        self,
        operation: str,
        speculative: Block,
        request: Awaitable[Block],
        placement: Optional[InsertTarget] = None,
    ) -> Block:
        """Apply a speculative record, await the store, confirm or revert.

        ``placement`` is where the store was asked to put the block, for
        operations that reorder it.
        """
        change = OptimisticChange.apply(self.index, updated=[speculative])
        try:
            canonical = await self._call(operation, request)
        except PersistenceFailure:
            change.rollback()
            await self._recover(operation)
            raise

        change.confirm(updated=[canonical])
        if placement is not None:
            await self._settle_placement([(canonical, placement.after_block_id)])
        self._emit(updated=[canonical])
        await self._check_invariants()
        return canonical

    # ------------------------------------------------------------------
    # Internals

    def _require(self, block_id: str, settled: bool = False) -> Block:
        """Return the block or raise ValidationError.

        Args:
            block_id: Block to look up
            settled: Also refuse blocks whose creation is still in flight
        """
        block = self.index.get(block_id)
        if block is None:
            raise ValidationError(f"Block {block_id} not found", block_id=block_id)
        if settled and is_temp_id(block_id):
            raise ValidationError(f"Block {block_id} is still being created", block_id=block_id)
        return block

    async def _call(self, operation: str, request: Awaitable[T]) -> T:
        """Await a gateway call, normalizing any failure to PersistenceFailure."""
        try:
            return await request
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(operation, str(e) or type(e).__name__, cause=e) from e

    async def _recover(self, operation: str) -> None:
        """Reload the page after a failed operation.

        A failed reload is logged; the caller re-raises the original failure
        either way.
        """
        self.log.warning("operation_failed_reloading", operation=operation)
        try:
            await self.reload()
        except (PersistenceFailure, InvariantViolation) as e:
            self.log.error("reload_after_failure_failed", operation=operation, error=str(e))

    async def _settle_placement(self, placements: Iterable[tuple[Block, Optional[str]]]) -> None:
        """Reload when adopted records do not sort where they were placed.

        The store may renumber a whole sibling group to make room for a
        block but answers with the placed record only. The neighbours held
        locally then keep their old weights and the group sorts differently
        from the store.

        Args:
            placements: Adopted records with the sibling each was placed after
                (None = first child)
        """
        misplaced = []
        for block, after_block_id in placements:
            siblings = self.index.siblings(block.id) if block.id in self.index else []
            # Unlisted records are left to the invariant check
            if block.id not in siblings:
                continue
            expected = siblings.index(after_block_id) + 1 if after_block_id in siblings else 0
            if siblings.index(block.id) != expected:
                misplaced.append(block.id)
        if not misplaced:
            return

        self.log.warning("sibling_weights_stale_reloading", block_ids=misplaced)
        try:
            await self.reload()
        except (PersistenceFailure, InvariantViolation) as e:
            self.log.error("sibling_reload_failed", error=str(e))
            raise
        groups = {self.index.get(bid).parent_id for bid in misplaced if bid in self.index}
        self._emit(updated=[self.index.get(sid) for parent in groups for sid in self.index.children(parent)])

    async def _check_invariants(self) -> None:
        """Verify the index; a violation triggers a full reload."""
        try:
            self.index.verify()
        except InvariantViolation as e:
            self.log.error("tree_index_invariant_violated", error=str(e))
            await self._recover("verify")

    def _emit(self, updated: Iterable[Block] = (), deleted_ids: Iterable[str] = ()) -> None:
        # Records removed from the index while their request was in flight stay unannounced
        live = [block for block in updated if block.id in self.index]
        self.events.emit(BlocksChanged(updated_or_created=live, deleted_ids=list(deleted_ids)))

    def _known_ids(self) -> list[str]:
        ids = list(self.focus.selected_block_ids)
        if self.focus.focused_block_id is not None:
            ids.append(self.focus.focused_block_id)
        return ids
