"""Utility wrapper around the Kubernetes Python client."""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .resource import ResourceDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lookup:
    """Result of a read that may legitimately find nothing.

    ``found`` is false only for a 404 from the API server; every other failure
    is raised by the call that produced the lookup.
    """

    value: Any = None
    found: bool = True

    @classmethod
    def missing(cls) -> "Lookup":
        return cls(None, False)


def _lookup(call, *args, **kwargs) -> Lookup:
    try:
        return Lookup(call(*args, **kwargs))
    except ApiException as e:
        if e.status == 404:
            return Lookup.missing()
        raise


class ClusterClient:
    """API handles shared by the prober, the watch loop and the handlers."""

    def __init__(self, custom_objects=None, core=None):
        self.custom_objects = custom_objects or client.CustomObjectsApi()
        self.core = core or client.CoreV1Api()

    def list_custom_objects(self, descriptor: ResourceDescriptor, namespace: str) -> Lookup:
        return _lookup(
            self.custom_objects.list_namespaced_custom_object,
            descriptor.group,
            descriptor.version,
            namespace,
            descriptor.plural,
        )

    def watch_custom_objects(
        self,
        watcher,
        descriptor: ResourceDescriptor,
        namespace: str,
        timeout_seconds: Optional[int] = None,
    ):
        """Open a watch stream of the kind's objects in ``namespace``."""
        kwargs = {"allow_watch_bookmarks": True}
        if timeout_seconds:
            kwargs["timeout_seconds"] = timeout_seconds
        return watcher.stream(
            self.custom_objects.list_namespaced_custom_object,
            descriptor.group,
            descriptor.version,
            namespace,
            descriptor.plural,
            **kwargs,
        )

    def read_config_map(self, name: str, namespace: str) -> Lookup:
        return _lookup(self.core.read_namespaced_config_map, name, namespace)

    def read_secret(self, name: str, namespace: str) -> Lookup:
        return _lookup(self.core.read_namespaced_secret, name, namespace)


def secret_value(secret, key: str) -> str:
    """Decode one entry of a secret's base64 ``data`` map."""
    return base64.b64decode(secret.data[key]).decode("utf-8")


def create_cluster_client(
    in_cluster: Optional[bool] = None, kubeconfig: Optional[str] = None
) -> ClusterClient:
    """Load configuration and create the shared client.

    Tries in-cluster config first and falls back to kubeconfig for
    development environments, unless ``in_cluster`` forces one of them.
    """
    if in_cluster is None:
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException:
            config.load_kube_config(config_file=kubeconfig)
            logger.info("Loaded kubeconfig configuration")
    elif in_cluster:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=kubeconfig)
    return ClusterClient()
