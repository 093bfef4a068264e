"""Own the watch connection and restart it whenever it ends."""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from kubernetes import watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import ReadTimeoutError

from .dispatcher import EventDispatcher
from .k8s_client import ClusterClient
from .prober import AvailabilityProber
from .resource import CustomResource, ResourceDescriptor, WatchEvent

logger = logging.getLogger(__name__)

TIMEOUT_ERRORS = (ReadTimeoutError, TimeoutError)

# Seconds a cleanly closed stream may fall short of the requested timeout
# and still count as timed out.
TIMEOUT_SLACK = 1.0


def watch_error_status(error: ApiException, namespace: str) -> Optional[Dict[str, Any]]:
    """Rebuild the Status object of an ERROR watch event.

    ``Watch.stream`` raises ERROR events as an ``ApiException`` built from the
    Status code and a "reason: message" string, without an HTTP response.
    Exceptions that carry a response are failed requests and return None.
    """
    if error.headers is not None or error.body is not None:
        return None
    reason, _, message = (error.reason or "").partition(": ")
    return {
        "apiVersion": "v1",
        "kind": "Status",
        "metadata": {"namespace": namespace},
        "status": "Failure",
        "code": error.status,
        "reason": reason,
        "message": message,
    }


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    WATCHING = "watching"
    STOPPED = "stopped"


class ConnectionManager:
    """Probe, watch, dispatch; and start over when the stream ends.

    Restarts happen in a loop, never by recursion. A stream that ends through
    a read timeout, or closes cleanly once the requested ``watch_timeout`` has
    elapsed, is expected and reconnects quietly. Anything else is logged as
    critical before reconnecting. ERROR events, which the kubernetes client
    raises instead of yielding, reach the handler's ``on_error`` first.
    """

    def __init__(
        self,
        client: ClusterClient,
        descriptor: ResourceDescriptor,
        namespace: str,
        prober: AvailabilityProber,
        dispatcher: EventDispatcher,
        resource_class=CustomResource,
        watch_timeout: Optional[int] = 300,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ):
        self.client = client
        self.descriptor = descriptor
        self.namespace = namespace
        self.prober = prober
        self.dispatcher = dispatcher
        self.resource_class = resource_class
        self.watch_timeout = watch_timeout
        self.watch_factory = watch_factory
        self.state = ConnectionState.DISCONNECTED
        self.reconnects = 0
        self._connected_once = False
        self._watch: Optional[watch.Watch] = None
        self._lock = threading.Lock()

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.info(
                "%s watch on namespace %s: %s -> %s",
                self.descriptor.plural,
                self.namespace,
                self.state.value,
                state.value,
            )
        self.state = state

    def run(self, stop_event: threading.Event, on_available: Optional[Callable[[], None]] = None) -> None:
        """Keep a watch open until ``stop_event`` is set."""
        while not stop_event.is_set():
            self._set_state(ConnectionState.DISCONNECTED)
            try:
                available = self.prober.wait_until_available(stop_event)
            except Exception:
                if not self._connected_once:
                    raise
                logger.critical(
                    "Availability check for %s failed. Retrying in %s seconds",
                    self.descriptor.plural,
                    self.descriptor.reconcile_interval,
                    exc_info=True,
                )
                stop_event.wait(self.descriptor.reconcile_interval)
                continue
            if not available:
                break
            if on_available is not None:
                on_available()

            timed_out, error = self._watch_once(stop_event)
            if stop_event.is_set():
                break
            # Events of the closed stream finish before the next stream replays state.
            self.dispatcher.drain()
            if timed_out:
                logger.info("Watch on %s timed out, reconnecting", self.descriptor.plural)
            else:
                logger.critical(
                    "Connection closed. Restarting %s operator",
                    self.descriptor.plural,
                    exc_info=error,
                )
            self.reconnects += 1
        self._set_state(ConnectionState.STOPPED)

    def _watch_once(self, stop_event: threading.Event) -> Tuple[bool, Optional[BaseException]]:
        """Consume one stream. Returns (ended by timeout, error that ended it)."""
        self._set_state(ConnectionState.CONNECTING)
        watcher = self.watch_factory()
        with self._lock:
            self._watch = watcher
        opened = time.monotonic()
        try:
            stream = self.client.watch_custom_objects(
                watcher, self.descriptor, self.namespace, timeout_seconds=self.watch_timeout
            )
            self._set_state(ConnectionState.WATCHING)
            self._connected_once = True
            for raw in stream:
                if stop_event.is_set():
                    break
                try:
                    event = WatchEvent.from_raw(raw, self.descriptor, self.resource_class)
                except Exception:
                    logger.exception("Skipping malformed %s watch event", self.descriptor.singular)
                    continue
                self.dispatcher.dispatch(event)
        except TIMEOUT_ERRORS:
            return True, None
        except ApiException as e:
            status = watch_error_status(e, self.namespace)
            if status is not None:
                self._dispatch_error(status)
            return False, e
        except Exception as e:
            return False, e
        finally:
            with self._lock:
                self._watch = None
            watcher.stop()
        return self._outlived_timeout(time.monotonic() - opened), None

    def _dispatch_error(self, status: Dict[str, Any]) -> None:
        try:
            event = WatchEvent.from_raw({"type": "ERROR", "object": status}, self.descriptor, self.resource_class)
        except Exception:
            logger.exception("Skipping malformed %s watch event", self.descriptor.singular)
            return
        self.dispatcher.dispatch(event)

    def _outlived_timeout(self, elapsed: float) -> bool:
        """True when a cleanly closed stream ran for the requested timeout."""
        if not self.watch_timeout:
            return False
        return elapsed >= self.watch_timeout - TIMEOUT_SLACK

    def interrupt(self) -> None:
        """Ask the active stream to end after its current event."""
        with self._lock:
            if self._watch is not None:
                self._watch.stop()
