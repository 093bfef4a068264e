"""Compose probing, watching, dispatching and reconciliation for one kind."""

import logging
import threading
from typing import Callable, Optional

from kubernetes import watch

from .dispatcher import EventDispatcher
from .handler import OperationHandler
from .k8s_client import ClusterClient, create_cluster_client
from .prober import AvailabilityProber
from .resource import CustomResource, ResourceDescriptor
from .scheduler import ReconciliationScheduler
from .watcher import ConnectionManager

logger = logging.getLogger(__name__)


class Controller:
    """Long-running controller for a single custom resource kind.

    ``run`` blocks until ``stop`` is called (or a start-up error escapes).
    The scheduler is started after the kind is first found and is never
    restarted by watch reconnects.
    """

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        handler: OperationHandler,
        namespace: str = "default",
        client: Optional[ClusterClient] = None,
        resource_class=CustomResource,
        watch_timeout: Optional[int] = 300,
        workers: int = 0,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
        in_cluster: Optional[bool] = None,
        kubeconfig: Optional[str] = None,
    ):
        if client is None:
            client = create_cluster_client(in_cluster=in_cluster, kubeconfig=kubeconfig)
        self.client = client
        self.descriptor = descriptor
        self.handler = handler
        self.namespace = namespace
        self.stop_event = threading.Event()

        self.prober = AvailabilityProber(client, descriptor, namespace)
        self.dispatcher = EventDispatcher(handler, client, descriptor, workers=workers)
        self.scheduler = ReconciliationScheduler(handler, client, descriptor)
        self.connection = ConnectionManager(
            client,
            descriptor,
            namespace,
            self.prober,
            self.dispatcher,
            resource_class=resource_class,
            watch_timeout=watch_timeout,
            watch_factory=watch_factory,
        )
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

    def run(self) -> None:
        logger.info(
            "Starting controller for %s on namespace %s", self.descriptor, self.namespace
        )
        try:
            self.connection.run(self.stop_event, on_available=self._start_scheduler)
        finally:
            self.stop_event.set()
            self.scheduler.join(self.descriptor.reconcile_interval)
            self.dispatcher.shutdown()
            logger.info("Controller for %s stopped", self.descriptor)

    def _start_scheduler(self) -> None:
        self.scheduler.start(self.stop_event)

    def start(self) -> threading.Thread:
        """Run the controller on a background thread."""
        self._thread = threading.Thread(
            target=self._run_in_thread, name=f"controller-{self.descriptor.singular}", daemon=True
        )
        self._thread.start()
        return self._thread

    def _run_in_thread(self) -> None:
        try:
            self.run()
        except BaseException as e:
            self._error = e
            self.stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for shutdown; re-raise the error that stopped a started controller."""
        stopped = self.stop_event.wait(timeout)
        if self._thread is not None and stopped:
            self._thread.join(self.descriptor.reconcile_interval)
        if self._error is not None:
            raise self._error
        return stopped

    def stop(self) -> None:
        logger.info("Stopping controller for %s", self.descriptor)
        self.stop_event.set()
        self.connection.interrupt()
