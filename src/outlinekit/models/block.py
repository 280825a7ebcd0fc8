"""Block record model."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class BlockType(str, Enum):
    """Kind of content a block holds."""

    BULLET = "bullet"
    CODE = "code"
    FENCE = "fence"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Block(BaseModel):
    """A node of the outline tree.

    Records are immutable: every change produces a new record via
    ``model_copy(update=...)`` and replaces the old one in the tree index.
    On the wire fields use camelCase (``pageId``, ``orderWeight``, ...);
    both spellings are accepted when validating.
    """

    id: str = Field(..., min_length=1, description="Globally unique block id")

    page_id: str = Field(..., description="Page the block belongs to")

    parent_id: Optional[str] = Field(
        default=None,
        description="Parent block id (None = root level)"
    )

    content: str = Field(default="", description="Markdown-flavoured text")

    order_weight: float = Field(..., description="Sort key among siblings")

    is_collapsed: bool = Field(
        default=False,
        description="Hides children from the visible projection only"
    )

    block_type: BlockType = Field(default=BlockType.BULLET)

    language: Optional[str] = Field(
        default=None,
        description="Language tag for code/fence blocks"
    )

    metadata: Optional[dict[str, str]] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)

    updated_at: datetime = Field(default_factory=utc_now)

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "alias_generator": to_camel,
    }

    def to_wire(self) -> dict:
        """Serialize with camelCase keys, as the block store expects."""
        return self.model_dump(mode="json", by_alias=True)


class NewBlock(BaseModel):
    """Content of a block to be created as part of a batch."""

    content: str = Field(default="")

    block_type: BlockType = Field(default=BlockType.BULLET)

    children: list["NewBlock"] = Field(default_factory=list)

    model_config = {"frozen": True}
