"""Route watch events to the operation handler."""

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Deque, Dict, Hashable, Optional, Tuple

from .handler import OperationHandler
from .k8s_client import ClusterClient
from .resource import EventType, ResourceDescriptor, WatchEvent

logger = logging.getLogger(__name__)

HANDLER_METHODS = {
    EventType.ADDED: "on_added",
    EventType.MODIFIED: "on_updated",
    EventType.DELETED: "on_deleted",
    EventType.BOOKMARK: "on_bookmarked",
    EventType.ERROR: "on_error",
}


class KeyedQueue:
    """Run submitted calls on a thread pool, serially and in order per key.

    Calls for different keys run in parallel; a key is never held by two
    workers at once.
    """

    def __init__(self, workers: int):
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch")
        self._pending: Dict[Hashable, Deque[Tuple[Callable, tuple]]] = {}
        self._outstanding = 0
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)

    def submit(self, key: Hashable, fn: Callable[..., Any], *args) -> None:
        with self._lock:
            self._outstanding += 1
            queue = self._pending.get(key)
            if queue is not None:
                queue.append((fn, args))
                return
            self._pending[key] = deque()
        self._executor.submit(self._run, key, fn, args)

    def _run(self, key, fn, args) -> None:
        while fn is not None:
            try:
                fn(*args)
            except Exception:
                logger.exception("Unhandled error in dispatch worker for %s", key)
            with self._lock:
                self._outstanding -= 1
                queue = self._pending[key]
                if queue:
                    fn, args = queue.popleft()
                else:
                    del self._pending[key]
                    fn = None
                if self._outstanding == 0:
                    self._idle.notify_all()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted call has finished."""
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class EventDispatcher:
    """Invoke exactly one handler method per watch event.

    With ``workers=0`` every event is handled inline before the next one is
    read from the stream. With ``workers>0`` events are queued per
    ``(namespace, name)`` so one resource's events keep their order while
    unrelated resources are handled in parallel.
    """

    def __init__(
        self,
        handler: OperationHandler,
        client: ClusterClient,
        descriptor: ResourceDescriptor,
        workers: int = 0,
    ):
        self.handler = handler
        self.client = client
        self.descriptor = descriptor
        self._queue = KeyedQueue(workers) if workers > 0 else None

    def dispatch(self, event: WatchEvent) -> None:
        kind = EventType.parse(event.kind)
        method_name = HANDLER_METHODS.get(kind)
        if method_name is None:
            logger.warning(
                "Don't know what to do with %s for %s %s",
                kind,
                self.descriptor.singular,
                event.resource.name,
            )
            return

        logger.info(
            "%s %s %s on namespace %s",
            self.descriptor.singular,
            event.resource.name,
            kind.value,
            event.resource.namespace,
        )
        if self._queue is None:
            self._invoke(method_name, kind, event.resource)
        else:
            self._queue.submit(event.resource.key, self._invoke, method_name, kind, event.resource)

    def _invoke(self, method_name: str, kind: EventType, resource) -> None:
        try:
            getattr(self.handler, method_name)(self.client, resource)
        except Exception:
            logger.exception(
                "An error occurred on the '%s' call (%s) of %s %s",
                kind.value,
                method_name,
                self.descriptor.singular,
                resource.name,
            )

    def drain(self, timeout: Optional[float] = None) -> bool:
        if self._queue is None:
            return True
        return self._queue.drain(timeout)

    def shutdown(self) -> None:
        if self._queue is not None:
            self._queue.shutdown()
