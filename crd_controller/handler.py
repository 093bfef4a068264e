"""Callbacks a domain operator implements, and a guarded table for its state."""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Generic, Iterator, List, Optional, TypeVar

from .k8s_client import ClusterClient
from .resource import CustomResource

R = TypeVar("R", bound=CustomResource)


class OperationHandler(ABC):
    """Domain lifecycle callbacks driven by the controller.

    The event callbacks run on the watch loop (or on dispatch workers) while
    ``check_current_state`` runs on the reconciliation thread, so the two may
    overlap. Implementations guard any state both paths touch, and should not
    let errors escape: the controller logs them but cannot act on them.
    """

    @abstractmethod
    def on_added(self, client: ClusterClient, resource: CustomResource) -> None:
        ...

    @abstractmethod
    def on_updated(self, client: ClusterClient, resource: CustomResource) -> None:
        ...

    @abstractmethod
    def on_deleted(self, client: ClusterClient, resource: CustomResource) -> None:
        ...

    @abstractmethod
    def on_bookmarked(self, client: ClusterClient, resource: CustomResource) -> None:
        ...

    @abstractmethod
    def on_error(self, client: ClusterClient, resource: CustomResource) -> None:
        ...

    @abstractmethod
    def check_current_state(self, client: ClusterClient) -> None:
        """Verify and repair the external state of every known resource."""


class ResourceTable(Generic[R]):
    """Name to resource mapping shared by the watch and reconciliation paths.

    Single operations are atomic. Hold ``lock()`` around read-modify-write
    sequences; the lock is reentrant so the table methods can be used inside it.
    """

    def __init__(self):
        self._items: Dict[str, R] = {}
        self._lock = threading.RLock()

    @contextmanager
    def lock(self) -> Iterator["ResourceTable[R]"]:
        with self._lock:
            yield self

    def get(self, name: str) -> Optional[R]:
        with self._lock:
            return self._items.get(name)

    def put(self, resource: R) -> None:
        with self._lock:
            self._items[resource.name] = resource

    def remove(self, name: str) -> Optional[R]:
        with self._lock:
            return self._items.pop(name, None)

    def snapshot(self) -> List[R]:
        with self._lock:
            return list(self._items.values())

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
