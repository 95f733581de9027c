"""
Connection event delivery
Callback subscriptions and asyncio.Queue listeners, independent of any
transport provider
"""
import asyncio
import inspect
import logging
import uuid
from typing import Any, Callable, Dict, Optional, Tuple, Type, Union

from .models import ConnectionFailed, ConnectionRefreshed, ConnectionStateChanged


logger = logging.getLogger(__name__)

ConnectionEvent = Union[ConnectionStateChanged, ConnectionRefreshed, ConnectionFailed]
Callback = Callable[[ConnectionEvent], Any]


class EventBus:
    """Delivers connection events to registered subscribers"""

    def __init__(self):
        self._callbacks: Dict[str, Tuple[Callback, Optional[Type]]] = {}
        self._listeners: Dict[str, asyncio.Queue] = {}

    def subscribe(self, callback: Callback, event_type: Optional[Type] = None) -> Callable[[], None]:
        """
        Register a callback (plain function or coroutine function).

        Args:
            callback: Called with each event
            event_type: Only deliver events of this class

        Returns:
            A function that removes the subscription
        """
        subscription_id = uuid.uuid4().hex
        self._callbacks[subscription_id] = (callback, event_type)

        def unsubscribe():
            self._callbacks.pop(subscription_id, None)

        return unsubscribe

    def listen(self) -> asyncio.Queue:
        """Return a queue that receives every event from now on"""
        queue: asyncio.Queue = asyncio.Queue()
        queue.listener_id = uuid.uuid4().hex
        self._listeners[queue.listener_id] = queue
        return queue

    def unlisten(self, queue: asyncio.Queue):
        self._listeners.pop(getattr(queue, "listener_id", None), None)

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks) + len(self._listeners)

    async def emit(self, event: ConnectionEvent):
        """Deliver an event to all subscribers; a failing subscriber does not stop the rest"""
        for callback, event_type in list(self._callbacks.values()):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Event subscriber {callback!r} failed on {type(event).__name__}")

        for queue in list(self._listeners.values()):
            queue.put_nowait(event)

    def clear(self):
        self._callbacks.clear()
        self._listeners.clear()
