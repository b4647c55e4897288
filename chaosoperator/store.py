"""Cluster object store used by the reconciler.

``ClusterStore`` is the contract the reconciler depends on;
``KubernetesStore`` implements it on top of the official kubernetes client.
"""

import logging
from typing import List, Optional

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from chaosoperator.deadline import Deadline
from chaosoperator.errors import (
    AlreadyExists,
    Conflict,
    InvalidSpec,
    NotFound,
    TransientStoreError,
)
from chaosoperator.models import ChaosEngine, NamespacedName
from chaosoperator.scheme import ResourceKind, register_engine_kind

logger = logging.getLogger(__name__)


def load_kube_config(kubeconfig: Optional[str] = None):
    """Load in-cluster config, falling back to a kubeconfig file."""
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        return
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def translate_api_exception(
    e: ApiException, kind: str, namespace: str, name: str, creating: bool = False
) -> Exception:
    """Map an ApiException onto the operator's error taxonomy."""
    if e.status == 404:
        return NotFound(kind, namespace, name)
    if e.status == 409:
        if creating:
            return AlreadyExists(f"{kind} {namespace}/{name} already exists")
        return Conflict(f"{kind} {namespace}/{name} was modified concurrently")
    if e.status in (400, 422):
        return InvalidSpec(f"{kind} {namespace}/{name} rejected: {e.reason}", [str(e.body or "")])
    return TransientStoreError(f"{kind} {namespace}/{name}: {e.status} {e.reason}")


class ClusterStore:
    """Get/Create/Update/Delete/List over the objects the reconciler touches.

    Every method takes the pass ``Deadline``; implementations must not block
    beyond it.
    """

    def get_engine(self, ref: NamespacedName, deadline: Deadline) -> ChaosEngine:
        raise NotImplementedError

    def update_engine(self, engine: ChaosEngine, deadline: Deadline) -> ChaosEngine:
        """Write the engine back; raises Conflict on a stale resourceVersion."""
        raise NotImplementedError

    def get_pod(self, namespace: str, name: str, deadline: Deadline) -> client.V1Pod:
        raise NotImplementedError

    def create_pod(self, pod: client.V1Pod, deadline: Deadline) -> client.V1Pod:
        raise NotImplementedError

    def list_pods(self, namespace: str, selector: str, deadline: Deadline) -> List[client.V1Pod]:
        raise NotImplementedError

    def delete_pods(
        self,
        namespace: str,
        selector: str,
        deadline: Deadline,
        grace_period_seconds: Optional[int] = None,
    ) -> int:
        """Delete every pod matching the selector; returns how many were removed."""
        raise NotImplementedError


class KubernetesStore(ClusterStore):
    """ClusterStore backed by the Kubernetes API server."""

    def __init__(
        self,
        engine_kind: Optional[ResourceKind] = None,
        core_api: Optional[client.CoreV1Api] = None,
        custom_api: Optional[client.CustomObjectsApi] = None,
    ):
        """Initialize the store.

        Args:
            engine_kind: Registered ChaosEngine kind, registered here if omitted.
            core_api: CoreV1Api instance; created from the loaded config if omitted.
            custom_api: CustomObjectsApi instance; created if omitted.
        """
        self.engine_kind = engine_kind or register_engine_kind()
        self.core_api = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()

    def _call(self, kind: str, obj_namespace: str, obj_name: str, fn, /, *args, creating=False, **kwargs):
        # Positional-only so that namespace= and name= reach the API call
        timeout = kwargs.pop("deadline").request_budget()
        if timeout is not None:
            kwargs["_request_timeout"] = timeout
        try:
            return fn(*args, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, kind, obj_namespace, obj_name, creating=creating) from e
        except urllib3.exceptions.HTTPError as e:
            raise TransientStoreError(f"{kind} {obj_namespace}/{obj_name}: {e}") from e

    def get_engine(self, ref: NamespacedName, deadline: Deadline) -> ChaosEngine:
        obj = self._call(
            self.engine_kind.kind, ref.namespace, ref.name,
            self.custom_api.get_namespaced_custom_object,
            group=self.engine_kind.group,
            version=self.engine_kind.version,
            namespace=ref.namespace,
            plural=self.engine_kind.plural,
            name=ref.name,
            deadline=deadline,
        )
        return ChaosEngine(obj)

    def update_engine(self, engine: ChaosEngine, deadline: Deadline) -> ChaosEngine:
        # The body carries metadata.resourceVersion, so a stale write gets a 409.
        obj = self._call(
            self.engine_kind.kind, engine.namespace, engine.name,
            self.custom_api.replace_namespaced_custom_object,
            group=self.engine_kind.group,
            version=self.engine_kind.version,
            namespace=engine.namespace,
            plural=self.engine_kind.plural,
            name=engine.name,
            body=engine.to_dict(),
            deadline=deadline,
        )
        return ChaosEngine(obj)

    def get_pod(self, namespace: str, name: str, deadline: Deadline) -> client.V1Pod:
        return self._call(
            "Pod", namespace, name,
            self.core_api.read_namespaced_pod,
            name, namespace,
            deadline=deadline,
        )

    def create_pod(self, pod: client.V1Pod, deadline: Deadline) -> client.V1Pod:
        namespace = pod.metadata.namespace
        return self._call(
            "Pod", namespace, pod.metadata.name,
            self.core_api.create_namespaced_pod,
            namespace, pod,
            creating=True,
            deadline=deadline,
        )

    def list_pods(self, namespace: str, selector: str, deadline: Deadline) -> List[client.V1Pod]:
        resp = self._call(
            "Pod", namespace, selector,
            self.core_api.list_namespaced_pod,
            namespace,
            label_selector=selector,
            deadline=deadline,
        )
        return list(resp.items or [])

    def delete_pods(
        self,
        namespace: str,
        selector: str,
        deadline: Deadline,
        grace_period_seconds: Optional[int] = None,
    ) -> int:
        removed = 0
        for pod in self.list_pods(namespace, selector, deadline):
            name = pod.metadata.name
            try:
                self._call(
                    "Pod", namespace, name,
                    self.core_api.delete_namespaced_pod,
                    name, namespace,
                    body=client.V1DeleteOptions(grace_period_seconds=grace_period_seconds),
                    deadline=deadline,
                )
            except NotFound:
                logger.debug("Pod %s/%s already gone", namespace, name)
                continue
            removed += 1
        return removed

