"""Pytest configuration and fixtures."""

from copy import deepcopy
from typing import Any, Dict, List, Optional, Tuple

import pytest
from kubernetes import client

from chaosoperator.errors import AlreadyExists, Conflict, NotFound
from chaosoperator.events import FakeRecorder
from chaosoperator.models import ChaosEngine, NamespacedName
from chaosoperator.reconciler import ChaosEngineReconciler
from chaosoperator.runner import RUNNER_CONTAINER_NAME
from chaosoperator.store import ClusterStore

CLIENT_UUID = "12345678-9012-3456-7890-123456789012"


def _matches(labels: Dict[str, str], selector: str) -> bool:
    for term in filter(None, selector.split(",")):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


class FakeStore(ClusterStore):
    """In-memory ClusterStore with resourceVersion checks and call recording."""

    def __init__(self):
        self.engines: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.pods: Dict[Tuple[str, str], client.V1Pod] = {}
        self.calls: List[Tuple[Any, ...]] = []
        self._version = 0
        # Set to an exception instance to make the next engine update fail with it
        self.fail_next_update: Optional[Exception] = None

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def add_engine(self, obj: Dict[str, Any]) -> ChaosEngine:
        obj = deepcopy(obj)
        obj.setdefault("metadata", {})["resourceVersion"] = self._next_version()
        meta = obj["metadata"]
        self.engines[(meta["namespace"], meta["name"])] = obj
        return ChaosEngine(obj)

    def engine(self, namespace: str, name: str) -> Optional[ChaosEngine]:
        obj = self.engines.get((namespace, name))
        return ChaosEngine(obj) if obj is not None else None

    def add_pod(self, pod: client.V1Pod):
        self.pods[(pod.metadata.namespace, pod.metadata.name)] = pod

    @property
    def mutating_calls(self) -> List[Tuple[Any, ...]]:
        return [c for c in self.calls if c[0] in ("update_engine", "create_pod", "delete_pod")]

    def get_engine(self, ref: NamespacedName, deadline) -> ChaosEngine:
        deadline.check()
        obj = self.engines.get((ref.namespace, ref.name))
        if obj is None:
            raise NotFound("ChaosEngine", ref.namespace, ref.name)
        return ChaosEngine(obj)

    def update_engine(self, engine: ChaosEngine, deadline) -> ChaosEngine:
        deadline.check()
        self.calls.append(("update_engine", engine.namespace, engine.name))
        if self.fail_next_update is not None:
            error, self.fail_next_update = self.fail_next_update, None
            raise error
        key = (engine.namespace, engine.name)
        current = self.engines.get(key)
        if current is None:
            raise NotFound("ChaosEngine", engine.namespace, engine.name)
        if current["metadata"].get("resourceVersion") != engine.resource_version:
            raise Conflict(f"ChaosEngine {engine.namespace}/{engine.name} was modified concurrently")
        obj = engine.to_dict()
        obj["metadata"]["resourceVersion"] = self._next_version()
        if obj["metadata"].get("deletionTimestamp") and not obj["metadata"].get("finalizers"):
            del self.engines[key]
        else:
            self.engines[key] = obj
        return ChaosEngine(obj)

    def get_pod(self, namespace: str, name: str, deadline) -> client.V1Pod:
        deadline.check()
        pod = self.pods.get((namespace, name))
        if pod is None:
            raise NotFound("Pod", namespace, name)
        return pod

    def create_pod(self, pod: client.V1Pod, deadline) -> client.V1Pod:
        deadline.check()
        key = (pod.metadata.namespace, pod.metadata.name)
        self.calls.append(("create_pod",) + key)
        if key in self.pods:
            raise AlreadyExists(f"Pod {key[0]}/{key[1]} already exists")
        self.pods[key] = pod
        return pod

    def list_pods(self, namespace: str, selector: str, deadline) -> List[client.V1Pod]:
        deadline.check()
        return [
            pod for (ns, _), pod in self.pods.items()
            if ns == namespace and _matches(pod.metadata.labels or {}, selector)
        ]

    def delete_pods(self, namespace: str, selector: str, deadline, grace_period_seconds=None) -> int:
        removed = 0
        for pod in self.list_pods(namespace, selector, deadline):
            self.calls.append(("delete_pod", namespace, pod.metadata.name, grace_period_seconds))
            del self.pods[(namespace, pod.metadata.name)]
            removed += 1
        return removed


def make_pod(
    name: str,
    namespace: str = "default",
    labels: Optional[Dict[str, str]] = None,
    exit_code: Optional[int] = None,
    container_name: str = RUNNER_CONTAINER_NAME,
) -> client.V1Pod:
    """Build a pod whose runner container is running, or terminated with ``exit_code``."""
    if exit_code is None:
        state = client.V1ContainerState(running=client.V1ContainerStateRunning())
        phase = "Running"
    else:
        state = client.V1ContainerState(
            terminated=client.V1ContainerStateTerminated(
                exit_code=exit_code,
                reason="Completed" if exit_code == 0 else "Error",
            )
        )
        phase = "Succeeded" if exit_code == 0 else "Failed"
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels or {}),
        status=client.V1PodStatus(
            phase=phase,
            container_statuses=[
                client.V1ContainerStatus(
                    name=container_name,
                    image="litmuschaos/chaos-runner:3.0.0",
                    image_id="",
                    ready=exit_code is None,
                    restart_count=0,
                    state=state,
                )
            ],
        ),
    )


def make_engine(
    name: str = "nginx-chaos",
    namespace: str = "default",
    engine_state: Optional[str] = "active",
    engine_status: Optional[str] = None,
    image: str = "litmuschaos/chaos-runner:3.0.0",
    experiments=("pod-delete",),
    service_account: str = "litmus-admin",
    finalizers=None,
    deletion_timestamp: Optional[str] = None,
    **runner_fields,
) -> Dict[str, Any]:
    """Build a raw ChaosEngine object."""
    engine: Dict[str, Any] = {
        "apiVersion": "litmuschaos.io/v1alpha1",
        "kind": "ChaosEngine",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
        },
        "spec": {
            "appinfo": {
                "appns": namespace,
                "applabel": "app=nginx",
                "appkind": "deployment",
            },
            "chaosServiceAccount": service_account,
            "components": {"runner": {"image": image, **runner_fields}},
            "experiments": [{"name": e} for e in experiments],
            "auxiliaryAppInfo": "ns1:name=percona,ns2:run=nginx",
        },
    }
    if engine_state is not None:
        engine["spec"]["engineState"] = engine_state
    if engine_status is not None:
        engine["status"] = {"engineStatus": engine_status}
    if finalizers is not None:
        engine["metadata"]["finalizers"] = list(finalizers)
    if deletion_timestamp is not None:
        engine["metadata"]["deletionTimestamp"] = deletion_timestamp
    return engine


@pytest.fixture
def store():
    """Fixture providing an empty in-memory cluster store."""
    return FakeStore()


@pytest.fixture
def recorder():
    """Fixture providing an in-memory event recorder."""
    return FakeRecorder()


@pytest.fixture
def reconciler(store, recorder):
    """Fixture providing a reconciler wired to the fake store and recorder."""
    return ChaosEngineReconciler(store, recorder=recorder, client_uuid=CLIENT_UUID, grace_period_seconds=30)


@pytest.fixture
def sample_engine():
    """Fixture providing an active ChaosEngine with one experiment."""
    return make_engine()


@pytest.fixture
def engine_factory():
    """Fixture providing the raw ChaosEngine builder."""
    return make_engine


@pytest.fixture
def pod_factory():
    """Fixture providing the pod builder."""
    return make_pod


@pytest.fixture
def client_uuid():
    """Fixture providing the correlation id the reconciler fixture uses."""
    return CLIENT_UUID
