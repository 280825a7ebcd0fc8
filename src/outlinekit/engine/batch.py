"""Commands over a multi-block selection.

Each command walks the selection in an order that keeps the operations
independent of one another and stops at the first failure (the engine has
already reloaded the page by then).
"""

from typing import Iterable, Optional

from outlinekit.engine.block_engine import BlockEngine
from outlinekit.models.block import BlockType
from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)


def _document_order(engine: BlockEngine, block_ids: Iterable[str]) -> list[str]:
    wanted = set(block_ids)
    return [block_id for block_id in engine.index.walk() if block_id in wanted]


def _topmost(engine: BlockEngine, block_ids: Iterable[str]) -> list[str]:
    """Drop ids whose ancestor is also selected (the ancestor carries them)."""
    selected = set(block_ids)
    return [
        block_id for block_id in _document_order(engine, selected)
        if not selected.intersection(engine.index.ancestors(block_id))
    ]


def can_indent(engine: BlockEngine, block_id: str) -> bool:
    return block_id in engine.index and engine.index.previous_sibling(block_id) is not None


def can_outdent(engine: BlockEngine, block_id: str) -> bool:
    block = engine.get_block(block_id)
    return block is not None and block.parent_id is not None


def can_collapse(engine: BlockEngine, block_id: str) -> bool:
    return block_id in engine.index and engine.index.has_children(block_id)


def collapsible_count(engine: BlockEngine, block_ids: Iterable[str]) -> int:
    return sum(1 for block_id in block_ids if can_collapse(engine, block_id))


async def delete_blocks(engine: BlockEngine, block_ids: Iterable[str]) -> list[str]:
    """Delete every selected block (descendants go with their ancestors)."""
    deleted: list[str] = []
    for block_id in reversed(_topmost(engine, block_ids)):
        if block_id in engine.index:
            deleted.extend(await engine.delete_block(block_id))
    engine.focus.forget(deleted)
    logger.info("batch_delete", count=len(deleted))
    return deleted


async def indent_blocks(engine: BlockEngine, block_ids: Iterable[str]) -> int:
    """Indent selected blocks top to bottom; returns how many moved."""
    moved = 0
    for block_id in _topmost(engine, block_ids):
        if can_indent(engine, block_id) and await engine.indent_block(block_id) is not None:
            moved += 1
    logger.info("batch_indent", moved=moved)
    return moved


async def outdent_blocks(engine: BlockEngine, block_ids: Iterable[str]) -> int:
    """Outdent selected blocks bottom to top; returns how many moved."""
    moved = 0
    for block_id in reversed(_topmost(engine, block_ids)):
        if can_outdent(engine, block_id) and await engine.outdent_block(block_id) is not None:
            moved += 1
    logger.info("batch_outdent", moved=moved)
    return moved


async def toggle_collapse_blocks(engine: BlockEngine, block_ids: Iterable[str]) -> int:
    """Toggle every selected block that has children."""
    toggled = 0
    for block_id in _document_order(engine, block_ids):
        if can_collapse(engine, block_id):
            await engine.toggle_collapse(block_id)
            toggled += 1
    logger.info("batch_toggle_collapse", toggled=toggled)
    return toggled


async def change_block_type(
    engine: BlockEngine,
    block_ids: Iterable[str],
    block_type: BlockType,
    language: Optional[str] = None,
) -> int:
    """Set the block type (and code language) of every selected block."""
    changed = 0
    for block_id in _document_order(engine, block_ids):
        block = engine.get_block(block_id)
        if block.block_type == block_type and (language is None or block.language == language):
            continue
        await engine.update_block(block_id, block_type=block_type, language=language)
        changed += 1
    logger.info("batch_change_type", block_type=block_type.value, changed=changed)
    return changed
