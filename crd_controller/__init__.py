"""Generic reconciliation controller for Kubernetes custom resources."""

from .controller import Controller
from .handler import OperationHandler, ResourceTable
from .k8s_client import ClusterClient, Lookup, create_cluster_client
from .resource import CustomResource, EventType, ObjectMeta, ResourceDescriptor, WatchEvent

__all__ = [
    "ClusterClient",
    "Controller",
    "CustomResource",
    "EventType",
    "Lookup",
    "ObjectMeta",
    "OperationHandler",
    "ResourceDescriptor",
    "ResourceTable",
    "WatchEvent",
    "create_cluster_client",
]
