"""Unit tests for the in-memory block store."""

import pytest

from factories import PAGE_ID, make_block
from outlinekit.exceptions import PersistenceFailure
from outlinekit.gateway.memory import InMemoryBlockGateway
from outlinekit.models.block import BlockType
from outlinekit.tree_index import TreeIndex


def page_index(gateway: InMemoryBlockGateway) -> TreeIndex:
    return TreeIndex.build(block for block in gateway.blocks.values() if block.page_id == PAGE_ID)


class TestCreate:
    """Test block creation and weight assignment."""

    @pytest.mark.asyncio
    async def test_create_first_position(self, gateway):
        block = await gateway.create_block(PAGE_ID, None, None, "first")
        assert page_index(gateway).root_ids() == [block.id, "a", "b", "c"]
        assert block.order_weight == 0.5

    @pytest.mark.asyncio
    async def test_create_between_siblings(self, gateway):
        block = await gateway.create_block(PAGE_ID, None, "a", "between")
        assert block.order_weight == 1.5
        assert page_index(gateway).root_ids() == ["a", block.id, "b", "c"]

    @pytest.mark.asyncio
    async def test_create_at_end(self, gateway):
        block = await gateway.create_block(PAGE_ID, "a", "a2", "last", BlockType.CODE)
        assert block.order_weight == 3.0
        assert block.block_type == BlockType.CODE
        assert page_index(gateway).children("a") == ["a1", "a2", block.id]

    @pytest.mark.asyncio
    async def test_create_rebalances_exhausted_group(self):
        gateway = InMemoryBlockGateway([make_block("x", weight=1e-6), make_block("y", weight=2e-6)])
        block = await gateway.create_block(PAGE_ID, None, None, "")

        assert gateway.blocks["x"].order_weight == 1.0
        assert gateway.blocks["y"].order_weight == 2.0
        assert block.order_weight == 0.5

    @pytest.mark.asyncio
    async def test_create_after_non_sibling_fails(self, gateway):
        with pytest.raises(PersistenceFailure, match="not a child"):
            await gateway.create_block(PAGE_ID, None, "a1", "")

    @pytest.mark.asyncio
    async def test_create_under_unknown_parent_fails(self, gateway):
        with pytest.raises(PersistenceFailure, match="not found"):
            await gateway.create_block(PAGE_ID, "ghost", None, "")


class TestStructure:
    """Test delete, move, indent, outdent and merge semantics."""

    @pytest.mark.asyncio
    async def test_delete_cascades(self, gateway):
        deleted = await gateway.delete_block("a")
        assert set(deleted) == {"a", "a1", "a2"}
        assert set(gateway.blocks) == {"b", "c"}

    @pytest.mark.asyncio
    async def test_move_into_own_subtree_fails(self, gateway):
        with pytest.raises(PersistenceFailure, match="own subtree"):
            await gateway.move_block("a", "a1", None)

    @pytest.mark.asyncio
    async def test_move_after_sibling(self, gateway):
        moved = await gateway.move_block("c", "a", "a1")
        assert moved.parent_id == "a"
        assert page_index(gateway).children("a") == ["a1", "c", "a2"]

    @pytest.mark.asyncio
    async def test_indent_appends_under_previous_sibling(self, gateway):
        block = await gateway.indent_block("b")
        assert block.parent_id == "a"
        assert page_index(gateway).children("a") == ["a1", "a2", "b"]

    @pytest.mark.asyncio
    async def test_indent_first_sibling_fails(self, gateway):
        with pytest.raises(PersistenceFailure, match="no previous sibling"):
            await gateway.indent_block("a")

    @pytest.mark.asyncio
    async def test_outdent_lands_after_former_parent(self, gateway):
        block = await gateway.outdent_block("a1")
        assert block.parent_id is None
        index = page_index(gateway)
        assert index.root_ids() == ["a", "a1", "b", "c"]
        assert index.children("a") == ["a2"]

    @pytest.mark.asyncio
    async def test_outdent_root_fails(self, gateway):
        with pytest.raises(PersistenceFailure, match="root level"):
            await gateway.outdent_block("b")

    @pytest.mark.asyncio
    async def test_merge_appends_content_and_moves_children(self, gateway):
        gateway.blocks["b1"] = make_block("b1", parent_id="b", weight=1.0, content="child")

        changed = await gateway.merge_blocks("b", "a2")

        assert [block.id for block in changed] == ["a2", "b1"]
        assert gateway.blocks["a2"].content == "TwoBeta"
        assert gateway.blocks["b1"].parent_id == "a2"
        assert "b" not in gateway.blocks

    @pytest.mark.asyncio
    async def test_merged_children_go_after_existing_children(self, gateway):
        changed = await gateway.merge_blocks("b", "a")
        assert [block.id for block in changed] == ["a"]

        gateway.blocks["c1"] = make_block("c1", parent_id="c", weight=1.0)
        await gateway.merge_blocks("c", "a")
        assert page_index(gateway).children("a") == ["a1", "a2", "c1"]

    @pytest.mark.asyncio
    async def test_merge_into_descendant_fails(self, gateway):
        with pytest.raises(PersistenceFailure):
            await gateway.merge_blocks("a", "a1")

    @pytest.mark.asyncio
    async def test_toggle_collapse(self, gateway):
        assert (await gateway.toggle_collapse("a")).is_collapsed
        assert not (await gateway.toggle_collapse("a")).is_collapsed

    @pytest.mark.asyncio
    async def test_update_patches_only_given_fields(self, gateway):
        block = await gateway.update_block("b", metadata={"k": "v"})
        assert block.content == "Beta"
        assert block.metadata == {"k": "v"}

    @pytest.mark.asyncio
    async def test_unknown_block_fails(self, gateway):
        with pytest.raises(PersistenceFailure, match="not found"):
            await gateway.toggle_collapse("ghost")

    @pytest.mark.asyncio
    async def test_calls_are_recorded(self, gateway):
        await gateway.load_page_blocks(PAGE_ID)
        await gateway.toggle_collapse("a")
        assert gateway.calls == ["load_page_blocks", "toggle_collapse"]
