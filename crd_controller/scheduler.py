import logging
import threading
import time
from typing import Optional

from .handler import OperationHandler
from .k8s_client import ClusterClient
from .resource import ResourceDescriptor

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Runs ``check_current_state`` every ``reconcile_interval`` seconds.

    Sweeps start on a fixed rate measured from the previous start, not from
    its end. They run one after another on a single thread, so two sweeps
    never overlap: a sweep that overruns the interval is followed by the next
    one right away. A failing sweep is logged and the next tick runs as usual.
    """

    def __init__(self, handler: OperationHandler, client: ClusterClient, descriptor: ResourceDescriptor):
        self.handler = handler
        self.client = client
        self.descriptor = descriptor
        self.ticks = 0
        self._thread: Optional[threading.Thread] = None

    def start(self, stop_event: threading.Event) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(
            target=self.run,
            args=(stop_event,),
            name=f"reconcile-{self.descriptor.singular}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def run(self, stop_event: threading.Event) -> None:
        logger.info(
            "Reconciliation loop for %s will run every %s seconds.",
            self.descriptor.singular,
            self.descriptor.reconcile_interval,
        )
        interval = self.descriptor.reconcile_interval
        deadline = time.monotonic() + interval
        while not stop_event.wait(max(0.0, deadline - time.monotonic())):
            self.tick()
            deadline = max(deadline + interval, time.monotonic())
        logger.info("Reconciliation loop for %s stopped", self.descriptor.singular)

    def tick(self) -> None:
        self.ticks += 1
        logger.info("Reconciliation sweep %d for %s", self.ticks, self.descriptor.plural)
        try:
            self.handler.check_current_state(self.client)
        except Exception:
            logger.exception("Reconciliation sweep for %s failed", self.descriptor.plural)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
