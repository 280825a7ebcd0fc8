"""Normalized in-memory storage for the blocks of one page.

The index keeps two structures:

- ``blocks_by_id``: id -> Block (authoritative)
- ``children_by_parent``: parent key -> ordered child ids (derived)

The parent key is the parent block id, or ``ROOT`` (None) for root-level
blocks. ``children_by_parent`` is never edited by hand: it is always
recomputed from ``blocks_by_id`` for the parent keys an edit touched, so an
incremental rebuild and a full rebuild always agree.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from outlinekit.exceptions import InvariantViolation
from outlinekit.models.block import Block
from outlinekit.ordering import sort_key


ROOT = None


@dataclass(frozen=True)
class InsertTarget:
    """Where a new block goes: under ``parent_id``, after ``after_block_id``.

    ``after_block_id`` None means "first child of parent_id".
    """

    parent_id: Optional[str]
    after_block_id: Optional[str]


@dataclass(frozen=True)
class VisibleBlock:
    """One row of the visible projection."""

    block: Block
    depth: int


class TreeIndex:
    """Block-by-id map plus children-by-parent adjacency lists.

    Only the block engine mutates an index; everything else reads it.
    """

    def __init__(self) -> None:
        self.blocks_by_id: dict[str, Block] = {}
        self.children_by_parent: dict[Optional[str], list[str]] = {ROOT: []}

    @classmethod
    def build(cls, blocks: Iterable[Block]) -> "TreeIndex":
        """Build an index from a flat list of blocks.

        Groups by ``parent_id`` (None = root) and sorts every group by
        ascending order weight, id breaking ties.

        Args:
            blocks: Flat list of blocks of one page

        Returns:
            New TreeIndex
        """
        index = cls()
        for block in blocks:
            index.blocks_by_id[block.id] = block
        index.children_by_parent = _group_children(index.blocks_by_id.values())
        return index

    def copy(self) -> "TreeIndex":
        """Shallow copy (blocks are immutable, lists are copied)."""
        clone = TreeIndex()
        clone.blocks_by_id = dict(self.blocks_by_id)
        clone.children_by_parent = {
            key: list(ids) for key, ids in self.children_by_parent.items()
        }
        return clone

    # ------------------------------------------------------------------
    # Rebuilding

    def rebuild_for_parents(self, parent_keys: Iterable[Optional[str]], touched: Iterable[str] = ()) -> None:
        """Recompute only the named child groups.

        Each group is rebuilt from its current member ids plus the touched
        ids, re-checked against ``blocks_by_id``. Cost is proportional to the
        size of the affected groups, not the whole page. Groups that end up
        empty are dropped (except root).

        Args:
            parent_keys: Parent ids (or ROOT) whose children may have changed
            touched: Ids of blocks that were added, replaced or removed
        """
        keys = set(parent_keys)
        if not keys:
            return

        candidates = set(touched)
        for key in keys:
            candidates.update(self.children_by_parent.get(key, ()))

        groups: dict[Optional[str], list[Block]] = {key: [] for key in keys}
        for block_id in candidates:
            block = self.blocks_by_id.get(block_id)
            if block is not None and block.parent_id in groups:
                groups[block.parent_id].append(block)

        for key, members in groups.items():
            if members:
                members.sort(key=sort_key)
                self.children_by_parent[key] = [block.id for block in members]
            elif key is ROOT:
                self.children_by_parent[ROOT] = []
            else:
                self.children_by_parent.pop(key, None)

    def apply(self, updated: Iterable[Block] = (), deleted_ids: Iterable[str] = ()) -> set[Optional[str]]:
        """Apply full-record replacements and deletions.

        Old and new parent keys of every touched block are rebuilt; deleted
        blocks also lose their own child group.

        Args:
            updated: New or replacement records
            deleted_ids: Ids to remove (missing ids are ignored)

        Returns:
            Set of parent keys that were rebuilt
        """
        affected: set[Optional[str]] = set()
        touched: list[str] = []

        for block_id in deleted_ids:
            touched.append(block_id)
            existing = self.blocks_by_id.pop(block_id, None)
            if existing is not None:
                affected.add(existing.parent_id)
            self.children_by_parent.pop(block_id, None)

        for block in updated:
            existing = self.blocks_by_id.get(block.id)
            if existing is not None:
                affected.add(existing.parent_id)
            affected.add(block.parent_id)
            touched.append(block.id)
            self.blocks_by_id[block.id] = block

        # A deleted id may also have been a parent key just re-added above
        affected = {key for key in affected if key is ROOT or key in self.blocks_by_id}
        self.rebuild_for_parents(affected, touched)
        return affected

    def replace_id(self, old_id: str, block: Block) -> None:
        """Swap a placeholder id for the real record, keeping its position.

        Args:
            old_id: Placeholder id currently in the index
            block: Canonical record that replaces it

        Raises:
            InvariantViolation: If old_id is not in the index
        """
        if old_id not in self.blocks_by_id:
            raise InvariantViolation(f"Cannot replace unknown block {old_id}")

        previous = self.blocks_by_id.pop(old_id)
        self.blocks_by_id[block.id] = block

        # Children of the placeholder (if any) now belong to the real id
        orphaned = self.children_by_parent.pop(old_id, None)
        if orphaned:
            for child_id in orphaned:
                child = self.blocks_by_id[child_id]
                self.blocks_by_id[child_id] = child.model_copy(update={"parent_id": block.id})

        self.rebuild_for_parents(
            {previous.parent_id, block.parent_id, block.id}, [old_id, block.id, *(orphaned or [])]
        )

    # ------------------------------------------------------------------
    # Reading

    def __len__(self) -> int:
        return len(self.blocks_by_id)

    def __contains__(self, block_id: object) -> bool:
        return block_id in self.blocks_by_id

    def __iter__(self) -> Iterator[Block]:
        """Iterate over all blocks in depth-first document order."""
        for block_id in self.walk():
            yield self.blocks_by_id[block_id]

    def get(self, block_id: str) -> Optional[Block]:
        return self.blocks_by_id.get(block_id)

    def children(self, parent_id: Optional[str]) -> list[str]:
        """Ordered child ids of a parent (ROOT for root-level blocks)."""
        return list(self.children_by_parent.get(parent_id, []))

    def root_ids(self) -> list[str]:
        return self.children(ROOT)

    def has_children(self, block_id: str) -> bool:
        return bool(self.children_by_parent.get(block_id))

    def parent_key(self, block_id: str) -> Optional[str]:
        """Key of the child group block_id lives in (ROOT for root blocks)."""
        return self.blocks_by_id[block_id].parent_id

    def siblings(self, block_id: str) -> list[str]:
        """Ordered ids of the group block_id belongs to (itself included)."""
        return self.children(self.parent_key(block_id))

    def sibling_index(self, block_id: str) -> int:
        return self.siblings(block_id).index(block_id)

    def previous_sibling(self, block_id: str) -> Optional[str]:
        siblings = self.siblings(block_id)
        index = siblings.index(block_id)
        return siblings[index - 1] if index > 0 else None

    def next_sibling(self, block_id: str) -> Optional[str]:
        siblings = self.siblings(block_id)
        index = siblings.index(block_id)
        return siblings[index + 1] if index < len(siblings) - 1 else None

    def walk(self, parent_id: Optional[str] = ROOT) -> Iterator[str]:
        """Yield ids below parent_id in depth-first order (collapsed or not)."""
        stack = list(reversed(self.children_by_parent.get(parent_id, [])))
        while stack:
            block_id = stack.pop()
            yield block_id
            stack.extend(reversed(self.children_by_parent.get(block_id, [])))

    def subtree_ids(self, block_id: str) -> list[str]:
        """block_id followed by all of its descendants, depth-first."""
        return [block_id, *self.walk(block_id)]

    def ancestors(self, block_id: str) -> list[str]:
        """Ids from the parent of block_id up to its root-level ancestor."""
        result = []
        parent_id = self.blocks_by_id[block_id].parent_id
        while parent_id is not None and parent_id in self.blocks_by_id:
            result.append(parent_id)
            parent_id = self.blocks_by_id[parent_id].parent_id
        return result

    def depth(self, block_id: str) -> int:
        return len(self.ancestors(block_id))

    # ------------------------------------------------------------------
    # Placement and navigation

    def insert_below_target(self, block_id: str) -> InsertTarget:
        """Where "create below block_id" puts the new block.

        Rule:
        1. If the block has children: the new block becomes its FIRST child.
        2. Otherwise: the new block becomes its NEXT sibling.

        Every insert-below entry point (Enter, split, tool calls, batch
        import) goes through this method.
        """
        if self.has_children(block_id):
            return InsertTarget(parent_id=block_id, after_block_id=None)
        return InsertTarget(
            parent_id=self.blocks_by_id[block_id].parent_id,
            after_block_id=block_id,
        )

    def last_visible_descendant(self, block_id: str) -> str:
        """Deepest last descendant reachable through expanded blocks."""
        current = block_id
        while True:
            block = self.blocks_by_id[current]
            children = self.children_by_parent.get(current)
            if block.is_collapsed or not children:
                return current
            current = children[-1]

    def previous_visible(self, block_id: str) -> Optional[str]:
        """Previous block in depth-first visible order.

        The previous sibling's deepest visible last descendant, else the
        parent, else None.
        """
        block = self.blocks_by_id.get(block_id)
        if block is None:
            return None

        previous = self.previous_sibling(block_id)
        if previous is not None:
            return self.last_visible_descendant(previous)

        return block.parent_id

    def next_visible(self, block_id: str) -> Optional[str]:
        """Next block in depth-first visible order.

        The first child when expanded with children; otherwise the first
        next sibling found walking up the parent chain, or None at the end.
        """
        block = self.blocks_by_id.get(block_id)
        if block is None:
            return None

        children = self.children_by_parent.get(block_id)
        if children and not block.is_collapsed:
            return children[0]

        current: Optional[str] = block_id
        while current is not None:
            following = self.next_sibling(current)
            if following is not None:
                return following
            current = self.blocks_by_id[current].parent_id
        return None

    def visible_blocks(self) -> list[VisibleBlock]:
        """Depth-first projection that skips children of collapsed blocks."""
        rows: list[VisibleBlock] = []

        def visit(parent_id: Optional[str], depth: int) -> None:
            for child_id in self.children_by_parent.get(parent_id, []):
                child = self.blocks_by_id[child_id]
                rows.append(VisibleBlock(block=child, depth=depth))
                if not child.is_collapsed:
                    visit(child_id, depth + 1)

        visit(ROOT, 0)
        return rows

    # ------------------------------------------------------------------
    # Consistency

    def verify(self) -> None:
        """Check every structural invariant of the index.

        Raises:
            InvariantViolation: On a dangling child reference, an orphan, a
                block listed twice or under the wrong parent, a mis-sorted
                group, a parent cycle, or any disagreement with a full rebuild
        """
        seen: set[str] = set()
        for parent_key, child_ids in self.children_by_parent.items():
            if parent_key is not ROOT and parent_key not in self.blocks_by_id:
                raise InvariantViolation(f"Child group for missing parent {parent_key}")
            for child_id in child_ids:
                block = self.blocks_by_id.get(child_id)
                if block is None:
                    raise InvariantViolation(f"Dangling child reference {child_id} under {parent_key}")
                if child_id in seen:
                    raise InvariantViolation(f"Block {child_id} listed more than once")
                if block.parent_id != parent_key:
                    raise InvariantViolation(
                        f"Block {child_id} listed under {parent_key} but parent is {block.parent_id}"
                    )
                seen.add(child_id)
            weights = [sort_key(self.blocks_by_id[child_id]) for child_id in child_ids]
            if weights != sorted(weights):
                raise InvariantViolation(f"Children of {parent_key} are not sorted by order weight")

        missing = set(self.blocks_by_id) - seen
        if missing:
            raise InvariantViolation(f"Blocks missing from any child group: {sorted(missing)}")

        reachable = set(self.walk())
        if reachable != seen:
            raise InvariantViolation(
                f"Blocks unreachable from root: {sorted(seen - reachable)}"
            )

        expected = _group_children(self.blocks_by_id.values())
        actual = {key: ids for key, ids in self.children_by_parent.items() if ids or key is ROOT}
        if expected != actual:
            raise InvariantViolation("Child groups disagree with a full rebuild")


def _group_children(blocks: Iterable[Block]) -> dict[Optional[str], list[str]]:
    """Group blocks by parent key and sort each group by order weight."""
    groups: dict[Optional[str], list[Block]] = {ROOT: []}
    for block in blocks:
        groups.setdefault(block.parent_id, []).append(block)
    return {
        key: [block.id for block in sorted(members, key=sort_key)]
        for key, members in groups.items()
    }
