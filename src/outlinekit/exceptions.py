"""Exceptions raised by the outlinekit block engine."""

from typing import Optional


class OutlinerError(Exception):
    """Base class for all outlinekit errors."""


class ValidationError(OutlinerError):
    """Raised when a caller passes input the engine cannot act on.

    Examples: a reference to a block that does not exist, a move that would
    place a block inside its own subtree, a cursor offset outside the content.
    No state is changed when this is raised.

    Attributes:
        block_id: Block the request referred to (if any)
        message: Human-readable error message
    """

    def __init__(self, message: str, block_id: Optional[str] = None):
        self.block_id = block_id
        self.message = message
        super().__init__(message)


class PersistenceFailure(OutlinerError):
    """Raised when a gateway call fails or returns malformed data.

    The engine has already rolled back or reloaded by the time this reaches
    the caller, so it is recoverable: the page state reflects the store.

    Attributes:
        operation: Gateway operation that failed (e.g. "merge_blocks")
        cause: Underlying exception, if any
    """

    def __init__(self, operation: str, message: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class InvariantViolation(OutlinerError):
    """Raised when the tree index is internally inconsistent.

    The only safe response is a full reload of the page.
    """
