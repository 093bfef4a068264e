"""Identity and payload types for custom resources handled by the controller."""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


def spec_checksum(spec: Any) -> str:
    """MD5 of the spec as canonical JSON (sorted keys, no whitespace)."""
    if hasattr(spec, "to_dict"):
        spec = spec.to_dict()
    data = json.dumps(spec, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(data.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ResourceDescriptor:
    """Identity of a custom resource kind.

    A single descriptor is created at start-up and shared by every component
    that needs to address the kind.
    """

    group: str
    version: str
    plural: str
    singular: str
    reconcile_interval: float = 5

    def __post_init__(self):
        if self.reconcile_interval <= 0:
            raise ValueError(
                f"reconcile_interval must be positive, got {self.reconcile_interval}"
            )

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    @property
    def status_annotation(self) -> str:
        return f"{self.group}/{self.singular}-status"

    def __str__(self) -> str:
        return f"{self.plural}.{self.group}/{self.version}"


@dataclass
class ObjectMeta:
    name: str
    namespace: str = "default"
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None
    uid: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace") or "default",
            annotations=dict(data.get("annotations") or {}),
            resource_version=data.get("resourceVersion"),
            uid=data.get("uid"),
        )


class CustomResource:
    """A custom object of a declared kind.

    Subclasses set ``spec_class`` to a type with a ``from_dict`` classmethod to
    get a typed spec; otherwise the raw ``spec`` mapping is kept.
    """

    spec_class = None

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        metadata: ObjectMeta,
        spec: Any = None,
        kind: Optional[str] = None,
    ):
        self.descriptor = descriptor
        self.metadata = metadata
        self.spec = spec
        self.kind = kind

    @classmethod
    def from_dict(cls, descriptor: ResourceDescriptor, obj: Dict[str, Any]):
        raw_spec = obj.get("spec") or {}
        if cls.spec_class is not None:
            spec = cls.spec_class.from_dict(raw_spec)
        else:
            spec = dict(raw_spec)
        return cls(
            descriptor,
            ObjectMeta.from_dict(obj.get("metadata") or {}),
            spec,
            kind=obj.get("kind"),
        )

    @property
    def api_version(self) -> str:
        return self.descriptor.api_version

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> Tuple[str, str]:
        return (self.metadata.namespace, self.metadata.name)

    @property
    def status(self) -> Optional[str]:
        return self.metadata.annotations.get(self.descriptor.status_annotation)

    def set_status(self, value: str) -> None:
        self.metadata.annotations[self.descriptor.status_annotation] = value

    def same_spec(self, other: "CustomResource") -> bool:
        """Compare spec payloads by their canonical JSON checksum."""
        return spec_checksum(self.spec) == spec_checksum(other.spec)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(namespace={self.namespace!r}, name={self.name!r})"
        )


class EventType(str, Enum):
    """Event kinds of the Kubernetes watch protocol."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: str) -> Union["EventType", str]:
        """Return the matching member, or the raw value when it is unknown."""
        try:
            return cls(value)
        except ValueError:
            return value


@dataclass
class WatchEvent:
    kind: Union[EventType, str]
    resource: CustomResource

    @classmethod
    def from_raw(
        cls,
        raw: Dict[str, Any],
        descriptor: ResourceDescriptor,
        resource_class=CustomResource,
    ) -> "WatchEvent":
        """Build an event from an item yielded by ``kubernetes.watch.Watch.stream``."""
        obj = raw.get("object")
        if not isinstance(obj, dict):
            obj = raw.get("raw_object") or {}
        return cls(
            EventType.parse(raw.get("type", "")),
            resource_class.from_dict(descriptor, obj),
        )
