"""Block id helpers."""

import uuid


TEMP_ID_PREFIX = "temp-"


def generate_block_id() -> str:
    """Generate a random UUID v4 for a block created by the store.

    Returns:
        UUID string in standard format
    """
    return str(uuid.uuid4())


def generate_temp_id() -> str:
    """Generate a local placeholder id for a block whose creation is in flight.

    Returns:
        Id of the form "temp-<hex>"

    Example:
        >>> generate_temp_id()
        'temp-9f1c2b7e4a0d4c0f8e3b6a5d2c1b0a99'
    """
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(block_id: str) -> bool:
    """Return True if block_id is a local placeholder id."""
    return block_id.startswith(TEMP_ID_PREFIX)
