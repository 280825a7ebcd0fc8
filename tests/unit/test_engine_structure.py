"""Unit tests for structural operations in the block engine."""

from unittest.mock import AsyncMock

import pytest

from factories import PAGE_ID, make_block
from outlinekit.engine.block_engine import BlockEngine
from outlinekit.exceptions import InvariantViolation, PersistenceFailure, ValidationError
from outlinekit.gateway.memory import InMemoryBlockGateway
from outlinekit.ordering import sort_key
from outlinekit.utils.ids import is_temp_id


class TestIndentOutdent:
    """Test Tab / Shift+Tab."""

    @pytest.mark.asyncio
    async def test_indent_becomes_last_child_of_previous_sibling(self, engine):
        block = await engine.indent_block("b")

        assert block.parent_id == "a"
        assert engine.get_children("a") == ["a1", "a2", "b"]
        assert engine.root_block_ids() == ["a", "c"]

    @pytest.mark.asyncio
    async def test_indent_first_sibling_is_noop(self, engine, gateway):
        assert await engine.indent_block("a") is None
        assert await engine.indent_block("a1") is None
        assert "indent_block" not in gateway.calls

    @pytest.mark.asyncio
    async def test_indent_under_leaf(self, engine):
        await engine.indent_block("a2")
        assert engine.get_children("a1") == ["a2"]

    @pytest.mark.asyncio
    async def test_outdent_lands_after_former_parent(self, engine):
        block = await engine.outdent_block("a1")

        assert block.parent_id is None
        assert engine.root_block_ids() == ["a", "a1", "b", "c"]
        assert engine.get_children("a") == ["a2"]

    @pytest.mark.asyncio
    async def test_outdent_root_is_noop(self, engine, gateway):
        assert await engine.outdent_block("b") is None
        assert "outdent_block" not in gateway.calls

    @pytest.mark.asyncio
    async def test_indent_then_outdent_restores_position(self, engine):
        await engine.indent_block("b")
        await engine.outdent_block("b")

        assert engine.root_block_ids() == ["a", "b", "c"]
        assert engine.get_children("a") == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_indent_is_applied_before_the_store_answers(self, engine, gateway):
        original = gateway.indent_block
        seen = {}

        async def spy(block_id):
            seen["parent"] = engine.get_block(block_id).parent_id
            seen["children"] = engine.get_children("a")
            return await original(block_id)

        gateway.indent_block = spy
        await engine.indent_block("b")

        assert seen == {"parent": "a", "children": ["a1", "a2", "b"]}

    @pytest.mark.asyncio
    async def test_indent_failure_rolls_back(self, engine, gateway):
        gateway.indent_block = AsyncMock(side_effect=PersistenceFailure("indent_block", "rejected"))

        with pytest.raises(PersistenceFailure):
            await engine.indent_block("b")

        assert engine.get_block("b").parent_id is None
        assert engine.root_block_ids() == ["a", "b", "c"]
        assert gateway.calls.count("load_page_blocks") == 2

    @pytest.mark.asyncio
    async def test_unexpected_gateway_error_is_wrapped(self, engine, gateway):
        gateway.outdent_block = AsyncMock(side_effect=RuntimeError("socket closed"))

        with pytest.raises(PersistenceFailure) as exc_info:
            await engine.outdent_block("a1")

        assert exc_info.value.operation == "outdent_block"
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_inconsistent_response_triggers_reload(self, engine, gateway):
        bogus = engine.get_block("b").model_copy(update={"parent_id": "ghost"})
        gateway.indent_block = AsyncMock(return_value=bogus)

        await engine.indent_block("b")

        # The reload replaced the bogus record with the store's copy
        assert engine.get_block("b").parent_id is None
        assert gateway.calls.count("load_page_blocks") == 2
        engine.index.verify()


class TestMove:
    """Test drag-and-drop moves."""

    @pytest.mark.asyncio
    async def test_move_after_sibling(self, engine):
        await engine.move_block("c", "a", "a1")
        assert engine.get_children("a") == ["a1", "c", "a2"]

    @pytest.mark.asyncio
    async def test_move_to_first_root_position(self, engine):
        await engine.move_block("c", None, None)
        assert engine.root_block_ids() == ["c", "a", "b"]

    @pytest.mark.asyncio
    async def test_move_into_crowded_gap_follows_store_order(self):
        gateway = InMemoryBlockGateway([
            make_block("x", weight=1.0),
            make_block("y", weight=1.0 + 1e-12),
            make_block("z", weight=5.0),
        ])
        engine = BlockEngine(gateway, PAGE_ID)
        await engine.open()

        await engine.move_block("z", None, "x")

        assert engine.root_block_ids() == ["x", "z", "y"]
        assert engine.get_block("y").order_weight == gateway.blocks["y"].order_weight
        engine.index.verify()

    @pytest.mark.asyncio
    async def test_move_carries_subtree(self, engine):
        await engine.move_block("a", None, "c")
        assert engine.root_block_ids() == ["b", "c", "a"]
        assert engine.get_children("a") == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_move_into_own_subtree_rejected(self, engine, gateway):
        with pytest.raises(ValidationError, match="own subtree"):
            await engine.move_block("a", "a1", None)
        assert "move_block" not in gateway.calls

    @pytest.mark.asyncio
    async def test_move_onto_itself_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.move_block("a", "a", None)

    @pytest.mark.asyncio
    async def test_after_block_must_be_child_of_destination(self, engine):
        with pytest.raises(ValidationError, match="not a child"):
            await engine.move_block("c", "a", "b")

    @pytest.mark.asyncio
    async def test_unknown_destination_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.move_block("c", "ghost", None)


class TestDelete:
    """Test deletion and focus handoff."""

    @pytest.mark.asyncio
    async def test_delete_cascades_to_descendants(self, engine):
        deleted = await engine.delete_block("a")

        assert set(deleted) == {"a", "a1", "a2"}
        assert engine.root_block_ids() == ["b", "c"]
        assert len(engine.index) == 2

    @pytest.mark.asyncio
    async def test_delete_focused_block_moves_focus_up(self, engine):
        engine.focus.set_focus("a2")

        await engine.delete_block("a2")

        assert engine.focus.focused_block_id == "a1"
        assert engine.focus.target_cursor_offset == len("One")

    @pytest.mark.asyncio
    async def test_delete_unfocused_block_keeps_focus(self, engine):
        engine.focus.set_focus("c")
        await engine.delete_block("b")
        assert engine.focus.focused_block_id == "c"

    @pytest.mark.asyncio
    async def test_last_block_is_never_deleted(self):
        gateway = InMemoryBlockGateway([make_block("only")])
        engine = BlockEngine(gateway, PAGE_ID)
        await engine.open()

        assert await engine.delete_block("only") == []
        assert "delete_block" not in gateway.calls
        assert len(engine.index) == 1

    @pytest.mark.asyncio
    async def test_subtree_covering_whole_page_is_refused(self):
        gateway = InMemoryBlockGateway([make_block("p"), make_block("k", parent_id="p")])
        engine = BlockEngine(gateway, PAGE_ID)
        await engine.open()

        assert await engine.delete_block("p") == []
        assert len(engine.index) == 2

    @pytest.mark.asyncio
    async def test_delete_failure_restores_blocks(self, engine, gateway):
        gateway.delete_block = AsyncMock(side_effect=PersistenceFailure("delete_block", "locked"))

        with pytest.raises(PersistenceFailure):
            await engine.delete_block("a")

        assert engine.get_children("a") == ["a1", "a2"]
        engine.index.verify()

    @pytest.mark.asyncio
    async def test_delete_unknown_block(self, engine):
        with pytest.raises(ValidationError):
            await engine.delete_block("ghost")


class TestCollapse:
    """Test collapse/expand."""

    @pytest.mark.asyncio
    async def test_collapse_hides_children_from_projection_only(self, engine):
        await engine.toggle_collapse("a")

        visible = [row.block.id for row in engine.visible_blocks()]
        assert visible == ["a", "b", "c"]
        assert engine.get_children("a") == ["a1", "a2"]
        assert engine.previous_visible_block("b") == "a"

    @pytest.mark.asyncio
    async def test_toggle_twice_expands(self, engine):
        await engine.toggle_collapse("a")
        block = await engine.toggle_collapse("a")

        assert not block.is_collapsed
        assert len(engine.visible_blocks()) == 5


class TestCreate:
    """Test block creation, including the first block of an empty page."""

    @pytest.mark.asyncio
    async def test_create_below_leaf(self, engine):
        new_id = await engine.create_block("b", "new")

        assert engine.root_block_ids() == ["a", "b", new_id, "c"]
        assert engine.focus.focused_block_id == new_id
        assert engine.focus.target_cursor_offset == 0

    @pytest.mark.asyncio
    async def test_create_below_parent_becomes_first_child(self, engine):
        new_id = await engine.create_block("a", "new")
        assert engine.get_children("a") == [new_id, "a1", "a2"]

    @pytest.mark.asyncio
    async def test_create_without_reference_goes_first(self, engine):
        new_id = await engine.create_block(None, "top")
        assert engine.root_block_ids()[0] == new_id

    @pytest.mark.asyncio
    async def test_order_matches_store_after_sibling_rebalance(self):
        """Test that repeated inserts at the top follow the store's renumbering."""
        gateway = InMemoryBlockGateway([make_block("x", content="last")])
        engine = BlockEngine(gateway, PAGE_ID)
        await engine.open()

        created = [await engine.create_block(None, f"item {i}") for i in range(25)]

        stored = sorted(
            (block for block in gateway.blocks.values() if block.parent_id is None),
            key=sort_key,
        )
        assert engine.root_block_ids() == [block.id for block in stored]
        assert engine.root_block_ids() == [*reversed(created), "x"]
        assert "load_page_blocks" in gateway.calls[1:]
        engine.index.verify()

    @pytest.mark.asyncio
    async def test_create_below_unknown_block(self, engine):
        with pytest.raises(ValidationError):
            await engine.create_block("ghost")

    @pytest.mark.asyncio
    async def test_empty_page_gets_first_block(self):
        gateway = InMemoryBlockGateway()
        engine = BlockEngine(gateway, PAGE_ID)

        await engine.open()

        assert len(engine.index) == 1
        block_id = engine.root_block_ids()[0]
        assert not is_temp_id(block_id)
        assert block_id in gateway.blocks
        assert engine.focus.focused_block_id == block_id

    @pytest.mark.asyncio
    async def test_content_typed_during_first_creation_is_persisted(self):
        gateway = InMemoryBlockGateway()
        engine = BlockEngine(gateway, PAGE_ID)
        original = gateway.create_block
        seen = {}

        async def slow_create(*args, **kwargs):
            temp_id = engine.focus.focused_block_id
            seen["temp_id"] = temp_id
            await engine.update_block_content(temp_id, "typed early")
            return await original(*args, **kwargs)

        gateway.create_block = slow_create
        await engine.open()

        assert is_temp_id(seen["temp_id"])
        real_id = engine.root_block_ids()[0]
        assert gateway.blocks[real_id].content == "typed early"
        assert engine.get_block(real_id).content == "typed early"
        assert engine.resolve_id(seen["temp_id"]) == real_id

    @pytest.mark.asyncio
    async def test_first_block_failure_leaves_page_empty(self):
        gateway = InMemoryBlockGateway()
        gateway.create_block = AsyncMock(side_effect=PersistenceFailure("create_block", "offline"))
        engine = BlockEngine(gateway, PAGE_ID)

        with pytest.raises(PersistenceFailure):
            await engine.open()

        assert len(engine.index) == 0
        assert engine.focus.focused_block_id is None

    @pytest.mark.asyncio
    async def test_inconsistent_page_is_rejected_on_load(self):
        gateway = InMemoryBlockGateway([make_block("x", parent_id="missing")])
        engine = BlockEngine(gateway, PAGE_ID)

        with pytest.raises(InvariantViolation):
            await engine.open()


class TestBatchCreate:
    """Test batch and markdown import."""

    @pytest.mark.asyncio
    async def test_markdown_after_leaf(self, engine):
        created = await engine.create_blocks_from_markdown("c", "- x\n  - y\n- z")

        assert len(created) == 3
        x, y, z = created
        assert engine.root_block_ids() == ["a", "b", "c", x, z]
        assert engine.get_children(x) == [y]
        assert engine.get_block(y).content == "y"

    @pytest.mark.asyncio
    async def test_markdown_after_parent_nests_as_first_children(self, engine):
        x, z = await engine.create_blocks_from_markdown("a", "- x\n- z")
        assert engine.get_children("a") == [x, z, "a1", "a2"]

    @pytest.mark.asyncio
    async def test_markdown_without_reference_appends_to_page(self, engine):
        (x,) = await engine.create_blocks_from_markdown(None, "- tail")
        assert engine.root_block_ids()[-1] == x

    @pytest.mark.asyncio
    async def test_markdown_without_bullets_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.create_blocks_from_markdown("c", "just prose")

    @pytest.mark.asyncio
    async def test_batch_failure_reloads_partial_result(self, engine, gateway):
        original = gateway.create_block
        attempts = []

        async def fail_second(*args, **kwargs):
            attempts.append(args)
            if len(attempts) == 2:
                raise PersistenceFailure("create_block", "quota exceeded")
            return await original(*args, **kwargs)

        gateway.create_block = fail_second

        with pytest.raises(PersistenceFailure):
            await engine.create_blocks_from_markdown("c", "- x\n- y\n- z")

        assert len(engine.index) == len(gateway.blocks) == 6
        engine.index.verify()
