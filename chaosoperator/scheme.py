"""Process-wide registration of the custom resource kinds the operator serves.

Registration happens once at startup; the resulting ``ResourceKind`` is the
capability object handed to the store and the controller.
"""

import threading
from dataclasses import dataclass
from typing import Dict


LITMUS_GROUP = "litmuschaos.io"
LITMUS_VERSION = "v1alpha1"


@dataclass(frozen=True)
class ResourceKind:
    """Group/version/plural coordinates of a custom resource."""

    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


_registry: Dict[str, ResourceKind] = {}
_lock = threading.Lock()


def register(kind: ResourceKind) -> ResourceKind:
    """Register a kind; re-registering the same coordinates is a no-op."""
    with _lock:
        existing = _registry.get(kind.kind)
        if existing is not None and existing != kind:
            raise ValueError(
                f"Kind {kind.kind} already registered as {existing.api_version}/{existing.plural}"
            )
        _registry[kind.kind] = kind
        return kind


def lookup(kind: str) -> ResourceKind:
    """Return a registered kind or raise KeyError."""
    with _lock:
        return _registry[kind]


def register_engine_kind() -> ResourceKind:
    """Register the ChaosEngine kind and return it."""
    return register(ResourceKind(
        group=LITMUS_GROUP,
        version=LITMUS_VERSION,
        plural="chaosengines",
        kind="ChaosEngine",
    ))
