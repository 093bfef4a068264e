import logging
import threading

from .k8s_client import ClusterClient
from .resource import ResourceDescriptor

logger = logging.getLogger(__name__)


class AvailabilityProber:
    """Checks whether the API server serves the descriptor's kind yet."""

    def __init__(self, client: ClusterClient, descriptor: ResourceDescriptor, namespace: str):
        self.client = client
        self.descriptor = descriptor
        self.namespace = namespace

    def probe(self) -> bool:
        """Single list attempt; false when the kind is not registered."""
        result = self.client.list_custom_objects(self.descriptor, self.namespace)
        if result.found:
            return True
        logger.warning(
            "No CustomResourceDefinition found for '%s', group '%s' and version '%s' on namespace '%s'.",
            self.descriptor.plural,
            self.descriptor.group,
            self.descriptor.version,
            self.namespace,
        )
        logger.info("Checking again in %s seconds...", self.descriptor.reconcile_interval)
        return False

    def wait_until_available(self, stop_event: threading.Event) -> bool:
        """Probe until the kind exists. Returns false if stopped first."""
        while not stop_event.is_set():
            if self.probe():
                return True
            stop_event.wait(self.descriptor.reconcile_interval)
        return False
