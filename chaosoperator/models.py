"""Typed views over the ChaosEngine custom resource.

The resource is kept as the raw dict returned by the API server so that
fields this operator does not know about survive a read-modify-write cycle.
"""

from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from chaosoperator.errors import InvalidSpec

ENGINE_FINALIZER = "chaosengine.litmuschaos.io/finalizer"


class EngineState(str, Enum):
    """Desired state, owned by whoever submits the ChaosEngine."""

    ACTIVE = "active"
    STOP = "stop"

    @classmethod
    def parse(cls, value: Optional[str]) -> "EngineState":
        """Parse the wire value; empty means active."""
        if not value:
            return cls.ACTIVE
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidSpec(f"unknown engineState {value!r}")


class EngineStatus(str, Enum):
    """Observed status, written only by the controller."""

    INITIALIZED = "Initialized"
    RUNNING = "Running"
    COMPLETED = "Completed"
    STOPPED = "Stopped"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EngineStatus"]:
        """Parse the wire value case-insensitively; empty means not yet set.

        ``active`` is accepted as an alias of Running.
        """
        if not value:
            return None
        lowered = value.strip().lower()
        if lowered == "active":
            return cls.RUNNING
        for status in cls:
            if status.value.lower() == lowered:
                return status
        raise InvalidSpec(f"unknown engineStatus {value!r}")


@dataclass(frozen=True)
class NamespacedName:
    """Reference delivered by the trigger layer."""

    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_key(cls, key: str) -> "NamespacedName":
        namespace, _, name = key.rpartition("/")
        return cls(namespace=namespace, name=name)

    def __str__(self) -> str:
        return self.key


@dataclass
class AppInfo:
    """Target application selector (spec.appinfo)."""

    applabel: str = ""
    appns: str = ""
    appkind: str = ""


@dataclass
class RunnerInfo:
    """Runner workload parameters (spec.components.runner)."""

    image: str = ""
    command: List[str] = field(default_factory=list)
    args: List[str] = field(default_factory=list)
    image_pull_policy: str = ""


class ChaosEngine:
    """A ChaosEngine resource backed by its raw API representation."""

    def __init__(self, obj: Dict[str, Any]):
        self._obj = deepcopy(obj)
        self._obj.setdefault("metadata", {})
        self._obj.setdefault("spec", {})

    @property
    def metadata(self) -> Dict[str, Any]:
        return self._obj["metadata"]

    @property
    def spec(self) -> Dict[str, Any]:
        return self._obj["spec"]

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace") or ""

    @property
    def uid(self) -> str:
        return self.metadata.get("uid") or ""

    @property
    def resource_version(self) -> str:
        return self.metadata.get("resourceVersion") or ""

    @property
    def reference(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)

    @property
    def is_being_deleted(self) -> bool:
        """True once the API server has stamped a deletion marker."""
        return bool(self.metadata.get("deletionTimestamp"))

    @property
    def finalizers(self) -> List[str]:
        return list(self.metadata.get("finalizers") or [])

    def has_finalizer(self, finalizer: str = ENGINE_FINALIZER) -> bool:
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str = ENGINE_FINALIZER) -> bool:
        """Add the finalizer; returns False when it was already present."""
        if self.has_finalizer(finalizer):
            return False
        self.metadata["finalizers"] = self.finalizers + [finalizer]
        return True

    def remove_finalizer(self, finalizer: str = ENGINE_FINALIZER) -> bool:
        """Remove the finalizer; returns False when it was not present."""
        if not self.has_finalizer(finalizer):
            return False
        self.metadata["finalizers"] = [f for f in self.finalizers if f != finalizer]
        return True

    @property
    def engine_state(self) -> EngineState:
        return EngineState.parse(self.spec.get("engineState"))

    @property
    def engine_status(self) -> Optional[EngineStatus]:
        return EngineStatus.parse((self._obj.get("status") or {}).get("engineStatus"))

    @engine_status.setter
    def engine_status(self, value: EngineStatus):
        status = self._obj.get("status") or {}
        status["engineStatus"] = value.value
        self._obj["status"] = status

    @property
    def app_info(self) -> AppInfo:
        appinfo = self.spec.get("appinfo") or {}
        return AppInfo(
            applabel=appinfo.get("applabel") or "",
            appns=appinfo.get("appns") or "",
            appkind=appinfo.get("appkind") or "",
        )

    @property
    def service_account(self) -> str:
        return self.spec.get("chaosServiceAccount") or ""

    @property
    def auxiliary_app_info(self) -> str:
        return self.spec.get("auxiliaryAppInfo") or ""

    @property
    def runner(self) -> RunnerInfo:
        runner = (self.spec.get("components") or {}).get("runner") or {}
        return RunnerInfo(
            image=runner.get("image") or "",
            command=list(runner.get("command") or []),
            args=list(runner.get("args") or []),
            image_pull_policy=runner.get("imagePullPolicy") or "",
        )

    @property
    def experiment_names(self) -> List[str]:
        return [e.get("name", "") for e in self.spec.get("experiments") or []]

    def to_dict(self) -> Dict[str, Any]:
        """Return a copy of the raw object, ready to be sent back."""
        return deepcopy(self._obj)

    def __repr__(self) -> str:
        return f"ChaosEngine({self.namespace}/{self.name})"


@dataclass
class EngineInfo:
    """Per-pass snapshot of a ChaosEngine plus the values derived from it."""

    instance: ChaosEngine
    targets: str = ""
    app_experiments: List[str] = field(default_factory=list)
    client_uuid: str = ""

    @property
    def runner_name(self) -> str:
        return f"{self.instance.name}-runner"
