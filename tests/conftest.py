"""Shared test fixtures for all test modules."""

import pytest
import pytest_asyncio

from factories import PAGE_ID, make_block
from outlinekit.engine.block_engine import BlockEngine
from outlinekit.gateway.memory import InMemoryBlockGateway
from outlinekit.models.block import Block


@pytest.fixture
def sample_blocks() -> list[Block]:
    """
    A small page:

        - Alpha (a)
          - One (a1)
          - Two (a2)
        - Beta (b)
        - Gamma (c)
    """
    return [
        make_block("a", weight=1.0, content="Alpha"),
        make_block("a1", parent_id="a", weight=1.0, content="One"),
        make_block("a2", parent_id="a", weight=2.0, content="Two"),
        make_block("b", weight=2.0, content="Beta"),
        make_block("c", weight=3.0, content="Gamma"),
    ]


@pytest.fixture
def gateway(sample_blocks) -> InMemoryBlockGateway:
    return InMemoryBlockGateway(sample_blocks)


@pytest_asyncio.fixture
async def engine(gateway):
    """Engine with the sample page open."""
    engine = BlockEngine(gateway, PAGE_ID)
    await engine.open()
    yield engine
    engine.close()
