"""outlinekit - editing core for hierarchical outline notes.

The package keeps an in-memory tree of blocks for one page, applies edits
optimistically, and reconciles them with an authoritative block store.

Example:
    >>> from outlinekit import BlockEngine, InMemoryBlockGateway
    >>> engine = BlockEngine(InMemoryBlockGateway(), "page-1")
    >>> await engine.open()
"""

from outlinekit.engine.block_engine import BlockEngine
from outlinekit.engine.drafts import DraftCoordinator
from outlinekit.exceptions import (
    InvariantViolation,
    OutlinerError,
    PersistenceFailure,
    ValidationError,
)
from outlinekit.gateway.base import BlockGateway
from outlinekit.gateway.http import HttpBlockGateway
from outlinekit.gateway.memory import InMemoryBlockGateway
from outlinekit.models.block import Block, BlockType
from outlinekit.models.events import BlocksChanged
from outlinekit.tree_index import TreeIndex

__version__ = "0.1.0"

__all__ = [
    "Block",
    "BlockEngine",
    "BlockGateway",
    "BlockType",
    "BlocksChanged",
    "DraftCoordinator",
    "HttpBlockGateway",
    "InMemoryBlockGateway",
    "InvariantViolation",
    "OutlinerError",
    "PersistenceFailure",
    "TreeIndex",
    "ValidationError",
]
