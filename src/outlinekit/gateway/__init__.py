"""Block store gateways."""

from outlinekit.gateway.base import BlockGateway
from outlinekit.gateway.http import HttpBlockGateway
from outlinekit.gateway.memory import InMemoryBlockGateway

__all__ = ["BlockGateway", "HttpBlockGateway", "InMemoryBlockGateway"]
