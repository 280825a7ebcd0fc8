"""Broadcast of "blocks changed" notifications."""

from typing import Callable

from outlinekit.models.events import BlocksChanged
from outlinekit.utils.logging import get_logger


logger = get_logger(__name__)

Listener = Callable[[BlocksChanged], None]


class BlockEventBus:
    """Synchronous fan-out of BlocksChanged events to registered listeners.

    A failing listener is logged and skipped; it never aborts the mutation
    that produced the event or starves the other listeners.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: BlocksChanged) -> None:
        if event.is_empty:
            return
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "blocks_changed_listener_failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                    exc_info=True,
                )

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
