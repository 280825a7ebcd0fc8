"""In-process block store.

Implements the authoritative side of the gateway contract in memory: it
assigns ids and order weights, rebalances sibling groups that ran out of
precision, cascades deletes and performs merges atomically. Used for offline
sessions, the ``demo`` command and the test-suite.
"""

from typing import Iterable, Optional

from outlinekit import ordering
from outlinekit.exceptions import PersistenceFailure
from outlinekit.gateway.base import BlockGateway
from outlinekit.models.block import Block, BlockType, utc_now
from outlinekit.utils.ids import generate_block_id
from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)


class InMemoryBlockGateway(BlockGateway):
    """Block store kept in a dict, with the same semantics as the real one.

    Attributes:
        blocks: id -> Block for every page
        calls: Names of the operations invoked, in order (handy in tests)
    """

    def __init__(self, blocks: Optional[Iterable[Block]] = None):
        self.blocks: dict[str, Block] = {block.id: block for block in blocks or []}
        self.calls: list[str] = []

    # ------------------------------------------------------------------
    # Helpers

    def _get(self, operation: str, block_id: str) -> Block:
        block = self.blocks.get(block_id)
        if block is None:
            raise PersistenceFailure(operation, f"block {block_id} not found")
        return block

    def _siblings(self, page_id: str, parent_id: Optional[str], exclude: Optional[str] = None) -> list[Block]:
        group = [
            block for block in self.blocks.values()
            if block.page_id == page_id and block.parent_id == parent_id and block.id != exclude
        ]
        group.sort(key=ordering.sort_key)
        return group

    def _neighbours(
        self,
        operation: str,
        page_id: str,
        parent_id: Optional[str],
        after_block_id: Optional[str],
        exclude: Optional[str],
    ) -> tuple[Optional[float], Optional[float]]:
        siblings = self._siblings(page_id, parent_id, exclude=exclude)
        if after_block_id is None:
            return None, siblings[0].order_weight if siblings else None

        for position, sibling in enumerate(siblings):
            if sibling.id == after_block_id:
                following = siblings[position + 1] if position + 1 < len(siblings) else None
                return sibling.order_weight, following.order_weight if following else None
        raise PersistenceFailure(
            operation, f"block {after_block_id} is not a child of {parent_id or 'the page root'}"
        )

    def _rebalance(self, page_id: str, parent_id: Optional[str], exclude: Optional[str]) -> None:
        siblings = self._siblings(page_id, parent_id, exclude=exclude)
        now = utc_now()
        for sibling, weight in zip(siblings, ordering.rebalanced(len(siblings))):
            self.blocks[sibling.id] = sibling.model_copy(update={"order_weight": weight, "updated_at": now})
        logger.debug("store_siblings_rebalanced", page_id=page_id, parent_id=parent_id, count=len(siblings))

    def _weight_for(
        self,
        operation: str,
        page_id: str,
        parent_id: Optional[str],
        after_block_id: Optional[str],
        exclude: Optional[str] = None,
    ) -> float:
        """Order weight for a block placed under parent_id after after_block_id."""
        before, after = self._neighbours(operation, page_id, parent_id, after_block_id, exclude)
        if ordering.needs_rebalancing(before, after):
            self._rebalance(page_id, parent_id, exclude)
            before, after = self._neighbours(operation, page_id, parent_id, after_block_id, exclude)
        return ordering.between(before, after)

    def _last_child_weight(self, page_id: str, parent_id: str, exclude: Optional[str] = None) -> Optional[float]:
        children = self._siblings(page_id, parent_id, exclude=exclude)
        return children[-1].order_weight if children else None

    def _is_descendant(self, block_id: str, ancestor_id: str) -> bool:
        current = self.blocks.get(block_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id == ancestor_id:
                return True
            current = self.blocks.get(current.parent_id)
        return False

    def _replace(self, block: Block, **changes) -> Block:
        updated = block.model_copy(update={**changes, "updated_at": utc_now()})
        self.blocks[block.id] = updated
        return updated

    # ------------------------------------------------------------------
    # Gateway operations

    async def load_page_blocks(self, page_id: str) -> list[Block]:
        self.calls.append("load_page_blocks")
        return [block for block in self.blocks.values() if block.page_id == page_id]

    async def create_block(
        self,
        page_id: str,
        parent_id: Optional[str],
        after_block_id: Optional[str],
        content: str = "",
        block_type: BlockType = BlockType.BULLET,
    ) -> Block:
        self.calls.append("create_block")
        if parent_id is not None and self._get("create_block", parent_id).page_id != page_id:
            raise PersistenceFailure("create_block", "parent belongs to a different page")

        weight = self._weight_for("create_block", page_id, parent_id, after_block_id)
        now = utc_now()
        block = Block(
            id=generate_block_id(),
            page_id=page_id,
            parent_id=parent_id,
            content=content,
            order_weight=weight,
            block_type=block_type,
            created_at=now,
            updated_at=now,
        )
        self.blocks[block.id] = block
        return block

    async def update_block(
        self,
        block_id: str,
        content: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        block_type: Optional[BlockType] = None,
        language: Optional[str] = None,
    ) -> Block:
        self.calls.append("update_block")
        block = self._get("update_block", block_id)
        changes = {}
        if content is not None:
            changes["content"] = content
        if metadata is not None:
            changes["metadata"] = dict(metadata)
        if block_type is not None:
            changes["block_type"] = block_type
        if language is not None:
            changes["language"] = language
        return self._replace(block, **changes)

    async def delete_block(self, block_id: str) -> list[str]:
        self.calls.append("delete_block")
        self._get("delete_block", block_id)

        doomed = [block_id]
        position = 0
        while position < len(doomed):
            parent = doomed[position]
            doomed.extend(block.id for block in self.blocks.values() if block.parent_id == parent)
            position += 1

        for doomed_id in doomed:
            del self.blocks[doomed_id]
        return doomed

    async def move_block(
        self,
        block_id: str,
        new_parent_id: Optional[str],
        after_block_id: Optional[str],
    ) -> Block:
        self.calls.append("move_block")
        block = self._get("move_block", block_id)
        if new_parent_id is not None:
            self._get("move_block", new_parent_id)
            if new_parent_id == block_id or self._is_descendant(new_parent_id, block_id):
                raise PersistenceFailure("move_block", "cannot move a block into its own subtree")

        weight = self._weight_for("move_block", block.page_id, new_parent_id, after_block_id, exclude=block_id)
        return self._replace(self.blocks[block_id], parent_id=new_parent_id, order_weight=weight)

    async def indent_block(self, block_id: str) -> Block:
        self.calls.append("indent_block")
        block = self._get("indent_block", block_id)
        siblings = self._siblings(block.page_id, block.parent_id)
        position = [sibling.id for sibling in siblings].index(block_id)
        if position == 0:
            raise PersistenceFailure("indent_block", "cannot indent: no previous sibling")

        new_parent = siblings[position - 1]
        weight = ordering.between(self._last_child_weight(block.page_id, new_parent.id), None)
        return self._replace(block, parent_id=new_parent.id, order_weight=weight)

    async def outdent_block(self, block_id: str) -> Block:
        self.calls.append("outdent_block")
        block = self._get("outdent_block", block_id)
        if block.parent_id is None:
            raise PersistenceFailure("outdent_block", "cannot outdent: already at root level")

        parent = self._get("outdent_block", block.parent_id)
        weight = self._weight_for(
            "outdent_block", block.page_id, parent.parent_id, parent.id, exclude=block_id
        )
        return self._replace(self.blocks[block_id], parent_id=parent.parent_id, order_weight=weight)

    async def merge_blocks(self, source_id: str, target_id: str) -> list[Block]:
        self.calls.append("merge_blocks")
        source = self._get("merge_blocks", source_id)
        target = self._get("merge_blocks", target_id)
        if source.page_id != target.page_id:
            raise PersistenceFailure("merge_blocks", "cannot merge blocks from different pages")
        if source_id == target_id or self._is_descendant(target_id, source_id):
            raise PersistenceFailure("merge_blocks", "cannot merge a block into its own subtree")

        moved = []
        last_weight = self._last_child_weight(target.page_id, target_id)
        for child in self._siblings(source.page_id, source_id):
            last_weight = ordering.between(last_weight, None)
            moved.append(self._replace(child, parent_id=target_id, order_weight=last_weight))

        merged = self._replace(target, content=target.content + source.content)
        del self.blocks[source_id]
        return [merged, *moved]

    async def toggle_collapse(self, block_id: str) -> Block:
        self.calls.append("toggle_collapse")
        block = self._get("toggle_collapse", block_id)
        return self._replace(block, is_collapsed=not block.is_collapsed)
