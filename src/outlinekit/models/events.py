"""Change notification model."""

from pydantic import BaseModel, Field

from outlinekit.models.block import Block


class BlocksChanged(BaseModel):
    """Broadcast after every successful mutation.

    Listeners mirror state from it (alternate projections, caches, activity
    trackers) and must tolerate receiving the same event twice.
    """

    updated_or_created: list[Block] = Field(default_factory=list)

    deleted_ids: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.updated_or_created and not self.deleted_ids

    def touches(self, block_id: str) -> bool:
        """Return True if the event mentions block_id."""
        if block_id in self.deleted_ids:
            return True
        return any(block.id == block_id for block in self.updated_or_created)
