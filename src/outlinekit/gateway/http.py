"""HTTP client for the block store."""

from typing import Any, Optional

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from outlinekit.exceptions import PersistenceFailure
from outlinekit.gateway.base import BlockGateway
from outlinekit.models.block import Block, BlockType
from outlinekit.models.config import GatewayConfig
from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)

_BLOCK_LIST = TypeAdapter(list[Block])
_ID_LIST = TypeAdapter(list[str])


class HttpBlockGateway(BlockGateway):
    """
    JSON-over-HTTP client for the block store.

    Every response is validated into ``Block`` records before it reaches the
    engine. Network errors, non-2xx statuses and malformed payloads are all
    reported as ``PersistenceFailure``.

    Routes:
        GET    /pages/{page_id}/blocks         -> [Block]
        POST   /pages/{page_id}/blocks         -> Block
        PATCH  /blocks/{id}                    -> Block
        DELETE /blocks/{id}                    -> {"deletedIds": [...]}
        POST   /blocks/{id}/move               -> Block
        POST   /blocks/{id}/indent             -> Block
        POST   /blocks/{id}/outdent            -> Block
        POST   /blocks/{id}/toggle-collapse    -> Block
        POST   /blocks/{id}/merge              -> {"blocks": [Block, ...]}
    """

    def __init__(self, config: GatewayConfig, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the gateway.

        Args:
            config: Block store connection settings
            client: Pre-built client (tests pass one with a MockTransport)
        """
        self.config = config
        self.base_url = str(config.endpoint).rstrip("/")
        self.timeout = httpx.Timeout(config.timeout)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Send one request and return the decoded JSON body.

        Raises:
            PersistenceFailure: On transport errors, error statuses or a non-JSON body
        """
        url = f"{self.base_url}{path}"
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        logger.debug("gateway_request", operation=operation, method=method, url=url)

        try:
            response = await self._get_client().request(method, url, json=json, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "gateway_request_rejected",
                operation=operation,
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
            raise PersistenceFailure(
                operation, f"store returned HTTP {e.response.status_code}", cause=e
            ) from e
        except httpx.HTTPError as e:
            logger.error("gateway_request_failed", operation=operation, error=str(e))
            raise PersistenceFailure(operation, str(e) or type(e).__name__, cause=e) from e
        except ValueError as e:
            logger.error("gateway_response_not_json", operation=operation, error=str(e))
            raise PersistenceFailure(operation, "response is not valid JSON", cause=e) from e

        return body

    @staticmethod
    def _parse_block(operation: str, payload: Any) -> Block:
        try:
            return Block.model_validate(payload)
        except PydanticValidationError as e:
            raise PersistenceFailure(operation, "malformed block record", cause=e) from e

    @staticmethod
    def _parse_blocks(operation: str, payload: Any) -> list[Block]:
        try:
            return _BLOCK_LIST.validate_python(payload)
        except PydanticValidationError as e:
            raise PersistenceFailure(operation, "malformed block list", cause=e) from e

    @staticmethod
    def _field(operation: str, payload: Any, key: str) -> Any:
        if not isinstance(payload, dict) or key not in payload:
            raise PersistenceFailure(operation, f"response is missing '{key}'")
        return payload[key]

    async def load_page_blocks(self, page_id: str) -> list[Block]:
        body = await self._request("load_page_blocks", "GET", f"/pages/{page_id}/blocks")
        return self._parse_blocks("load_page_blocks", body)

    async def create_block(
        self,
        page_id: str,
        parent_id: Optional[str],
        after_block_id: Optional[str],
        content: str = "",
        block_type: BlockType = BlockType.BULLET,
    ) -> Block:
        body = await self._request(
            "create_block",
            "POST",
            f"/pages/{page_id}/blocks",
            json={
                "parentId": parent_id,
                "afterBlockId": after_block_id,
                "content": content,
                "blockType": block_type.value,
            },
        )
        return self._parse_block("create_block", body)

    async def update_block(
        self,
        block_id: str,
        content: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        block_type: Optional[BlockType] = None,
        language: Optional[str] = None,
    ) -> Block:
        patch: dict[str, Any] = {}
        if content is not None:
            patch["content"] = content
        if metadata is not None:
            patch["metadata"] = metadata
        if block_type is not None:
            patch["blockType"] = block_type.value
        if language is not None:
            patch["language"] = language

        body = await self._request("update_block", "PATCH", f"/blocks/{block_id}", json=patch)
        return self._parse_block("update_block", body)

    async def delete_block(self, block_id: str) -> list[str]:
        body = await self._request("delete_block", "DELETE", f"/blocks/{block_id}")
        deleted = self._field("delete_block", body, "deletedIds")
        try:
            return _ID_LIST.validate_python(deleted)
        except PydanticValidationError as e:
            raise PersistenceFailure("delete_block", "malformed id list", cause=e) from e

    async def move_block(
        self,
        block_id: str,
        new_parent_id: Optional[str],
        after_block_id: Optional[str],
    ) -> Block:
        body = await self._request(
            "move_block",
            "POST",
            f"/blocks/{block_id}/move",
            json={"newParentId": new_parent_id, "afterBlockId": after_block_id},
        )
        return self._parse_block("move_block", body)

    async def indent_block(self, block_id: str) -> Block:
        body = await self._request("indent_block", "POST", f"/blocks/{block_id}/indent")
        return self._parse_block("indent_block", body)

    async def outdent_block(self, block_id: str) -> Block:
        body = await self._request("outdent_block", "POST", f"/blocks/{block_id}/outdent")
        return self._parse_block("outdent_block", body)

    async def merge_blocks(self, source_id: str, target_id: str) -> list[Block]:
        body = await self._request(
            "merge_blocks",
            "POST",
            f"/blocks/{source_id}/merge",
            json={"targetId": target_id},
        )
        return self._parse_blocks("merge_blocks", self._field("merge_blocks", body, "blocks"))

    async def toggle_collapse(self, block_id: str) -> Block:
        body = await self._request("toggle_collapse", "POST", f"/blocks/{block_id}/toggle-collapse")
        return self._parse_block("toggle_collapse", body)
