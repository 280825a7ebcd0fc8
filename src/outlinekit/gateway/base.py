"""Block store gateway interface.

The gateway is the engine's only path to the authoritative block store.
Every call is atomic from the engine's point of view: either the change
lands and the canonical record(s) come back, or ``PersistenceFailure`` is
raised and no partial local state may be trusted.
"""

from abc import ABC, abstractmethod
from typing import Optional

from outlinekit.models.block import Block, BlockType


class BlockGateway(ABC):
    """Abstract interface for block store clients.

    Implementations must return canonical records and raise
    ``PersistenceFailure`` for transport errors, rejected requests and
    malformed responses alike.
    """

    @abstractmethod
    async def load_page_blocks(self, page_id: str) -> list[Block]:
        """Load every block of a page as a flat list.

        Args:
            page_id: Page to load

        Returns:
            All blocks of the page, in no particular order

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    @abstractmethod
    async def create_block(
        self,
        page_id: str,
        parent_id: Optional[str],
        after_block_id: Optional[str],
        content: str = "",
        block_type: BlockType = BlockType.BULLET,
    ) -> Block:
        """Create a block under parent_id, right after after_block_id.

        Args:
            page_id: Page the block belongs to
            parent_id: Parent block id (None = root level)
            after_block_id: Sibling to insert after (None = first position)
            content: Initial content
            block_type: Initial block type

        Returns:
            The created block with its store-assigned id and weight

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    @abstractmethod
    async def update_block(
        self,
        block_id: str,
        content: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        block_type: Optional[BlockType] = None,
        language: Optional[str] = None,
    ) -> Block:
        """Patch a block's content and/or metadata.

        Only the arguments that are not None are sent.

        Returns:
            The updated block

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    @abstractmethod
    async def delete_block(self, block_id: str) -> list[str]:
        """Delete a block and all of its descendants.

        Returns:
            Ids of every destroyed block (the block itself included)

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    @abstractmethod
    async def move_block(
        self,
        block_id: str,
        new_parent_id: Optional[str],
        after_block_id: Optional[str],
    ) -> Block:
        """Reparent and/or reorder a block (its subtree moves with it).

        Returns:
            The moved block

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    @abstractmethod
    async def indent_block(self, block_id: str) -> Block:
        """Make a block the last child of its previous sibling.

        Returns:
            The updated block

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    @abstractmethod
    async def outdent_block(self, block_id: str) -> Block:
        """Make a block the sibling right after its former parent.

        Returns:
            The updated block

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    @abstractmethod
    async def merge_blocks(self, source_id: str, target_id: str) -> list[Block]:
        """Append source's content to target and move source's children under target.

        The source block is destroyed by the store as part of the same
        atomic change.

        Returns:
            Changed blocks: the target first, then the reparented children

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    @abstractmethod
    async def toggle_collapse(self, block_id: str) -> Block:
        """Flip a block's collapsed flag.

        Returns:
            The updated block

        Raises:
            PersistenceFailure: If the request fails or returns invalid data
        """

    async def aclose(self) -> None:
        """Release any resources held by the gateway."""
        return None
