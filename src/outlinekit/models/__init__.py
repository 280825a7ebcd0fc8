"""Pydantic data models for outlinekit."""

from outlinekit.models.block import Block, BlockType, NewBlock
from outlinekit.models.events import BlocksChanged

__all__ = ["Block", "BlockType", "BlocksChanged", "NewBlock"]
