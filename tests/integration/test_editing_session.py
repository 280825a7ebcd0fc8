"""Integration tests: whole editing sessions through drafts and the engine."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from factories import PAGE_ID, make_block
from outlinekit.engine.block_engine import BlockEngine
from outlinekit.engine.drafts import DraftCoordinator
from outlinekit.exceptions import PersistenceFailure
from outlinekit.gateway.memory import InMemoryBlockGateway
from outlinekit.outline import render_outline


pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def blank_session():
    """An engine opened on an empty page, plus its draft coordinator."""
    gateway = InMemoryBlockGateway()
    engine = BlockEngine(gateway, PAGE_ID)
    await engine.open()
    drafts = DraftCoordinator(engine, debounce_seconds=60)
    yield gateway, engine, drafts
    await drafts.close()
    engine.close()


class TestTypingSession:
    """Type, split, indent and merge starting from an empty page."""

    @pytest.mark.asyncio
    async def test_session_from_empty_page(self, blank_session):
        gateway, engine, drafts = blank_session

        first = engine.focus.focused_block_id
        assert first is not None
        assert engine.root_block_ids() == [first]
        assert drafts.begin_editing(first) == ("", 0)

        drafts.input(first, "Project plan")
        assert await drafts.commit(first)

        # Enter at the end of the line, then Tab
        second = await drafts.split(first, len("Project plan"))
        assert drafts.begin_editing(second) == ("", 0)
        drafts.input(second, "write tests")
        await engine.indent_block(second)
        assert engine.get_children(first) == [second]

        # Enter again without committing: the split persists the live text
        third = await drafts.split(second, len("write tests"))
        assert engine.get_block(second).content == "write tests"
        assert engine.get_children(first) == [second, third]

        drafts.begin_editing(third)
        drafts.input(third, "ship it")

        # Backspace at offset 0 merges the live text into the block above
        target = await drafts.merge_with_previous(third)

        assert target == second
        assert engine.get_block(third) is None
        assert drafts.begin_editing(second) == ("write testsship it", len("write tests"))

        await drafts.blur()
        assert engine.focus.focused_block_id is None
        assert render_outline(engine.index) == "- Project plan\n  - write testsship it"

        reopened = BlockEngine(gateway, PAGE_ID)
        await reopened.open()
        assert render_outline(reopened.index) == render_outline(engine.index)

    @pytest.mark.asyncio
    async def test_backspace_on_empty_block_deletes_it(self, blank_session):
        _, engine, drafts = blank_session

        first = engine.focus.focused_block_id
        drafts.begin_editing(first)
        drafts.input(first, "only line")
        second = await drafts.split(first, len("only line"))

        target = await drafts.merge_with_previous(second)

        assert target == first
        assert engine.root_block_ids() == [first]
        assert drafts.begin_editing(first) == ("only line", len("only line"))


class TestIdleCommit:
    """Drafts are flushed after the idle delay."""

    @pytest.mark.asyncio
    async def test_debounced_write(self, engine, gateway):
        drafts = DraftCoordinator(engine, debounce_seconds=0.01)
        drafts.begin_editing("b")
        drafts.input("b", "Bet")
        drafts.input("b", "Beta!")

        await asyncio.sleep(0.1)

        assert gateway.blocks["b"].content == "Beta!"
        assert gateway.calls.count("update_block") == 1
        await drafts.close()


class TestFailureRecovery:
    """A failed merge leaves the page reloaded and the draft intact."""

    @pytest.mark.asyncio
    async def test_failed_merge_keeps_source_and_draft(self, engine, gateway):
        drafts = DraftCoordinator(engine, debounce_seconds=60)
        gateway.merge_blocks = AsyncMock(side_effect=PersistenceFailure("merge_blocks", "offline"))
        drafts.begin_editing("b")
        drafts.input("b", "Beta edited")

        with pytest.raises(PersistenceFailure):
            await drafts.merge_with_previous("b")

        assert engine.focus.focused_block_id == "b"
        assert not engine.merge_lock.is_merging("b")
        assert engine.get_block("b").content == "Beta edited"
        assert drafts.draft("b") == "Beta edited"
        assert engine.root_block_ids() == ["a", "b", "c"]
        await drafts.close()


async def _open(blocks):
    gateway = InMemoryBlockGateway(blocks)
    engine = BlockEngine(gateway, PAGE_ID)
    await engine.open()
    return gateway, engine


class TestOutlineScenarios:
    """Literal editing scenarios on small pages."""

    @pytest.mark.asyncio
    async def test_create_after_leaf_root(self):
        _, engine = await _open([make_block("A")])

        new_id = await engine.create_block("A", "")

        assert engine.root_block_ids() == ["A", new_id]

    @pytest.mark.asyncio
    async def test_split_hello_world(self):
        _, engine = await _open([make_block("X", content="Hello World")])

        new_id = await engine.split_at_cursor("X", 5)

        assert engine.get_block("X").content == "Hello"
        assert engine.get_block(new_id).content == " World"
        assert engine.root_block_ids() == ["X", new_id]
        assert engine.focus.focused_block_id == new_id
        assert engine.focus.target_cursor_offset == 0

    @pytest.mark.asyncio
    async def test_merge_child_into_parent(self):
        _, engine = await _open([
            make_block("P", content="Foo"),
            make_block("Q", parent_id="P", content="Bar"),
            make_block("R", parent_id="Q", content="Baz"),
        ])

        target = await engine.merge_with_previous("Q")

        assert target == "P"
        assert engine.get_block("P").content == "FooBar"
        assert engine.get_block("Q") is None
        assert engine.get_children("P") == ["R"]
        assert engine.focus.focused_block_id == "P"
        assert engine.focus.target_cursor_offset == 3
        engine.index.verify()

    @pytest.mark.asyncio
    async def test_split_then_merge_restores_content(self, engine):
        new_id = await engine.split_at_cursor("a2", 1)
        await engine.merge_with_previous(new_id)

        assert engine.get_block("a2").content == "Two"
        assert engine.get_children("a") == ["a1", "a2"]
