"""Tool-calling surface over the block engine.

Automation clients (an agent loop, scripts) edit the open page through the
same engine operations the editing surface uses. Every tool returns a
``ToolResult`` instead of raising, so a caller can feed the outcome straight
back to a model.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from outlinekit.engine.block_engine import BlockEngine
from outlinekit.exceptions import PersistenceFailure, ValidationError
from outlinekit.models.block import Block, BlockType, NewBlock
from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)


class ToolResult(BaseModel):
    """Outcome of one tool call."""

    success: bool = Field(..., description="Whether the tool did what was asked")

    data: Optional[Any] = Field(default=None, description="Tool-specific payload")

    error: Optional[str] = Field(default=None, description="Why the call failed")

    model_config = {"frozen": True}

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)


def _summary(block: Block) -> dict[str, Any]:
    return {
        "uuid": block.id,
        "content": block.content,
        "parentId": block.parent_id,
        "isCollapsed": block.is_collapsed,
        "blockType": block.block_type.value,
    }


class BlockTools:
    """Named block tools bound to one engine.

    Example:
        >>> tools = BlockTools(engine)
        >>> result = await tools.execute("append_to_block", {"block_id": bid, "text": "done"})
        >>> result.success
        True
    """

    def __init__(self, engine: BlockEngine):
        self.engine = engine
        self._tools: dict[str, Callable[..., Awaitable[ToolResult]]] = {
            "get_page_blocks": self.get_page_blocks,
            "get_block": self.get_block,
            "create_block": self.create_block,
            "insert_block_below": self.insert_block_below,
            "insert_block_below_current": self.insert_block_below_current,
            "create_blocks_from_markdown": self.create_blocks_from_markdown,
            "update_block": self.update_block,
            "append_to_block": self.append_to_block,
            "delete_block": self.delete_block,
            "indent_block": self.indent_block,
            "outdent_block": self.outdent_block,
            "move_block": self.move_block,
            "merge_blocks": self.merge_blocks,
            "toggle_collapse": self.toggle_collapse,
        }

    @property
    def names(self) -> list[str]:
        return sorted(self._tools)

    async def execute(self, name: str, arguments: Optional[dict[str, Any]] = None) -> ToolResult:
        """Run a tool by name.

        Engine errors become failed results; unknown tools and arguments that
        do not fit the tool's signature are reported the same way. Any other
        error propagates.
        """
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {name}")

        logger.info("tool_called", tool=name, arguments=arguments or {})
        try:
            bound = inspect.signature(tool).bind(**(arguments or {}))
        except TypeError as e:
            logger.warning("tool_bad_arguments", tool=name, error=str(e))
            return ToolResult.fail(f"Invalid arguments for {name}: {e}")

        try:
            return await tool(*bound.args, **bound.kwargs)
        except ValidationError as e:
            logger.warning("tool_rejected", tool=name, error=e.message)
            return ToolResult.fail(e.message)
        except PersistenceFailure as e:
            logger.error("tool_failed", tool=name, error=str(e))
            return ToolResult.fail(str(e))

    # ------------------------------------------------------------------
    # Reading

    async def get_page_blocks(self) -> ToolResult:
        blocks = [
            {**_summary(row.block), "depth": row.depth}
            for row in self.engine.visible_blocks()
        ]
        return ToolResult.ok({"pageId": self.engine.page_id, "blocks": blocks})

    async def get_block(self, block_id: str) -> ToolResult:
        block = self.engine.get_block(block_id)
        if block is None:
            return ToolResult.fail(f"Block {block_id} not found")
        return ToolResult.ok({**_summary(block), "children": self.engine.get_children(block.id)})

    # ------------------------------------------------------------------
    # Creating

    async def create_block(self, content: str, after_block_id: Optional[str] = None) -> ToolResult:
        block_id = await self.engine.create_block(after_block_id, content)
        return ToolResult.ok({"uuid": block_id, "content": content})

    async def insert_block_below(self, block_id: str, content: str) -> ToolResult:
        new_id = await self.engine.create_block(block_id, content)
        return ToolResult.ok({"uuid": new_id, "content": content, "insertedBelow": block_id})

    async def insert_block_below_current(self, content: str) -> ToolResult:
        """Insert below the focused block, or at the end of the page."""
        focused = self.engine.focus.focused_block_id
        if focused is None or focused not in self.engine.index:
            created = await self.engine.create_blocks_batch(None, [NewBlock(content=content)])
            return ToolResult.ok({"uuid": created[0], "content": content, "insertedAt": "end_of_page"})

        new_id = await self.engine.create_block(focused, content)
        return ToolResult.ok({"uuid": new_id, "content": content, "insertedBelow": focused})

    async def create_blocks_from_markdown(self, markdown: str, after_block_id: Optional[str] = None) -> ToolResult:
        created = await self.engine.create_blocks_from_markdown(after_block_id, markdown)
        return ToolResult.ok({"uuids": created, "count": len(created)})

    # ------------------------------------------------------------------
    # Editing

    async def update_block(
        self,
        block_id: str,
        content: Optional[str] = None,
        block_type: Optional[str] = None,
        language: Optional[str] = None,
    ) -> ToolResult:
        if content is not None:
            await self.engine.update_block_content(block_id, content)
        if block_type is not None or language is not None:
            try:
                parsed_type = BlockType(block_type) if block_type is not None else None
            except ValueError:
                return ToolResult.fail(f"Unknown block type: {block_type}")
            await self.engine.update_block(block_id, block_type=parsed_type, language=language)

        block = self.engine.get_block(block_id)
        if block is None:
            return ToolResult.fail(f"Block {block_id} not found")
        return ToolResult.ok(_summary(block))

    async def append_to_block(self, block_id: str, text: str, separator: str = " ") -> ToolResult:
        block = self.engine.get_block(block_id)
        if block is None:
            return ToolResult.fail(f"Block {block_id} not found")

        new_content = block.content + separator + text if block.content else text
        await self.engine.update_block_content(block.id, new_content)
        return ToolResult.ok(
            {"uuid": block.id, "originalContent": block.content, "newContent": new_content}
        )

    async def delete_block(self, block_id: str) -> ToolResult:
        deleted = await self.engine.delete_block(block_id)
        if not deleted:
            return ToolResult.fail("Cannot delete the last block of a page")
        return ToolResult.ok({"deletedIds": deleted})

    # ------------------------------------------------------------------
    # Structure

    async def indent_block(self, block_id: str) -> ToolResult:
        block = await self.engine.indent_block(block_id)
        if block is None:
            return ToolResult.fail("Block has no previous sibling to indent under")
        return ToolResult.ok(_summary(block))

    async def outdent_block(self, block_id: str) -> ToolResult:
        block = await self.engine.outdent_block(block_id)
        if block is None:
            return ToolResult.fail("Block is already at root level")
        return ToolResult.ok(_summary(block))

    async def move_block(
        self,
        block_id: str,
        new_parent_id: Optional[str] = None,
        after_block_id: Optional[str] = None,
    ) -> ToolResult:
        block = await self.engine.move_block(block_id, new_parent_id, after_block_id)
        return ToolResult.ok(_summary(block))

    async def merge_blocks(self, block_id: str, target_block_id: Optional[str] = None) -> ToolResult:
        """Merge a block into target_block_id, or the block visually above it."""
        if target_block_id is not None:
            target_id = await self.engine.merge_into(block_id, target_block_id)
        else:
            target_id = await self.engine.merge_with_previous(block_id)
        if target_id is None:
            return ToolResult.fail("Nothing to merge into")
        target = self.engine.get_block(target_id)
        return ToolResult.ok({"mergedInto": target_id, "content": target.content if target else None})

    async def toggle_collapse(self, block_id: str) -> ToolResult:
        block = await self.engine.toggle_collapse(block_id)
        return ToolResult.ok(_summary(block))
