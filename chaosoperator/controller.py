"""Watch-driven trigger layer for the ChaosEngine reconciler.

Watches ChaosEngines and their runner pods, turns every change into an
engine key on a work queue and drains the queue on a bounded pool of worker
threads. The queue guarantees a key is never processed by two workers at
once; keys that fail transiently come back with exponential backoff.
"""

import heapq
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Set, Tuple

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from chaosoperator.config.loader import OperatorConfig
from chaosoperator.deadline import Deadline
from chaosoperator.errors import TransientStoreError
from chaosoperator.models import NamespacedName
from chaosoperator.reconciler import ChaosEngineReconciler
from chaosoperator.runner import COMPONENT_LABEL, ENGINE_LABEL, RUNNER_COMPONENT
from chaosoperator.scheme import ResourceKind, register_engine_kind

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 300.0
WATCH_TIMEOUT_SECONDS = 300


class WorkQueue:
    """De-duplicating queue of keys with per-key exclusivity.

    A key added while it is being processed is held back until ``done`` is
    called for it, so the same key is never handed to two workers.
    """

    def __init__(self, backoff_base: float = BACKOFF_BASE_SECONDS, backoff_max: float = BACKOFF_MAX_SECONDS):
        self._cond = threading.Condition()
        self._queue: List[str] = []
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._delayed: List[Tuple[float, str]] = []
        self._failures: Dict[str, int] = {}
        self._shutdown = False
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: str):
        with self._cond:
            if self._shutdown or key in self._dirty:
                return
            self._dirty.add(key)
            if key not in self._processing:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: str, delay: float):
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._delayed, (time.monotonic() + delay, key))
            self._cond.notify()

    def add_rate_limited(self, key: str):
        with self._cond:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
        self.add_after(key, self.backoff_delay(failures))

    def backoff_delay(self, failures: int) -> float:
        return min(self.backoff_base * (2 ** (failures - 1)), self.backoff_max)

    def num_requeues(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def forget(self, key: str):
        with self._cond:
            self._failures.pop(key, None)

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Block until a key is ready; None on shutdown or timeout."""
        end = time.monotonic() + timeout if timeout is not None else None
        with self._cond:
            while True:
                self._promote_delayed()
                if self._queue:
                    key = self._queue.pop(0)
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                if self._shutdown:
                    return None
                wait = None
                if self._delayed:
                    wait = max(0.0, self._delayed[0][0] - time.monotonic())
                if end is not None:
                    left = end - time.monotonic()
                    if left <= 0:
                        return None
                    wait = left if wait is None else min(wait, left)
                self._cond.wait(wait)

    def done(self, key: str):
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self):
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def _promote_delayed(self):
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, key = heapq.heappop(self._delayed)
            if key in self._dirty:
                continue
            self._dirty.add(key)
            if key not in self._processing:
                self._queue.append(key)


def engine_key(obj: Dict[str, Any]) -> Optional[str]:
    """Queue key of a ChaosEngine watch object."""
    metadata = obj.get("metadata") or {}
    if not metadata.get("name") or not metadata.get("namespace"):
        return None
    return NamespacedName(metadata["namespace"], metadata["name"]).key


def runner_pod_key(pod: client.V1Pod) -> Optional[str]:
    """Queue key of the engine owning a runner pod, from its labels."""
    if pod.metadata is None:
        return None
    engine_name = (pod.metadata.labels or {}).get(ENGINE_LABEL)
    if not engine_name or not pod.metadata.namespace:
        return None
    return NamespacedName(pod.metadata.namespace, engine_name).key


class ChaosEngineController:
    """Feeds the reconciler from Kubernetes watches."""

    def __init__(
        self,
        reconciler: ChaosEngineReconciler,
        settings: OperatorConfig,
        custom_api: Optional[client.CustomObjectsApi] = None,
        core_api: Optional[client.CoreV1Api] = None,
        engine_kind: Optional[ResourceKind] = None,
        queue: Optional[WorkQueue] = None,
    ):
        self.reconciler = reconciler
        self.settings = settings
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.core_api = core_api or client.CoreV1Api()
        self.engine_kind = engine_kind or register_engine_kind()
        self.queue = queue or WorkQueue()
        self._stop = threading.Event()

    # ------------------------------------------------------------------
    # Queue processing
    # ------------------------------------------------------------------

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Take one key off the queue and reconcile it.

        Returns:
            False once the queue has shut down or nothing arrived in time.
        """
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self._reconcile_key(key)
        finally:
            self.queue.done(key)
        return True

    def _reconcile_key(self, key: str):
        deadline = Deadline(
            timeout=self.settings.reconcile_timeout_seconds,
            request_timeout=self.settings.request_timeout_seconds,
            cancelled=self._stop,
        )
        try:
            result = self.reconciler.reconcile(NamespacedName.from_key(key), deadline)
        except TransientStoreError as e:
            logger.warning("Reconcile of %s failed transiently (%s), retry #%d", key, e, self.queue.num_requeues(key) + 1)
            self.queue.add_rate_limited(key)
            return
        except Exception:
            logger.exception("Unexpected error reconciling %s", key)
            self.queue.add_rate_limited(key)
            return

        if result.requeue_after:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self.queue.add_rate_limited(key)
        else:
            self.queue.forget(key)

    def _worker(self):
        while not self._stop.is_set():
            if not self.process_next(timeout=1.0) and self._stop.is_set():
                return

    # ------------------------------------------------------------------
    # Watches
    # ------------------------------------------------------------------

    def _engine_stream(self, w: watch.Watch):
        kind = self.engine_kind
        namespace = self.settings.watch_namespace
        if namespace:
            return w.stream(
                self.custom_api.list_namespaced_custom_object,
                kind.group, kind.version, namespace, kind.plural,
                timeout_seconds=WATCH_TIMEOUT_SECONDS,
            )
        return w.stream(
            self.custom_api.list_cluster_custom_object,
            kind.group, kind.version, kind.plural,
            timeout_seconds=WATCH_TIMEOUT_SECONDS,
        )

    def _runner_stream(self, w: watch.Watch):
        selector = f"{COMPONENT_LABEL}={RUNNER_COMPONENT}"
        namespace = self.settings.watch_namespace
        if namespace:
            return w.stream(
                self.core_api.list_namespaced_pod, namespace,
                label_selector=selector, timeout_seconds=WATCH_TIMEOUT_SECONDS,
            )
        return w.stream(
            self.core_api.list_pod_for_all_namespaces,
            label_selector=selector, timeout_seconds=WATCH_TIMEOUT_SECONDS,
        )

    def _watch_loop(self, name: str, open_stream, key_of):
        while not self._stop.is_set():
            w = watch.Watch()
            try:
                for event in open_stream(w):
                    if self._stop.is_set():
                        break
                    key = key_of(event["object"])
                    if key:
                        logger.debug("%s watch: %s %s", name, event["type"], key)
                        self.queue.add(key)
            except ApiException as e:
                if e.status != 410:
                    logger.warning("%s watch failed: %s %s", name, e.status, e.reason)
                    self._stop.wait(1.0)
            except Exception as e:
                logger.warning("%s watch interrupted: %s", name, e)
                self._stop.wait(1.0)
            finally:
                w.stop()

    def resync(self):
        """Enqueue every ChaosEngine currently in scope."""
        kind = self.engine_kind
        namespace = self.settings.watch_namespace
        if namespace:
            resp = self.custom_api.list_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural
            )
        else:
            resp = self.custom_api.list_cluster_custom_object(kind.group, kind.version, kind.plural)
        count = 0
        for item in resp.get("items", []):
            key = engine_key(item)
            if key:
                self.queue.add(key)
                count += 1
        logger.debug("Resync queued %d ChaosEngine(s)", count)

    def _resync_loop(self):
        period = self.settings.resync_seconds
        while not self._stop.wait(period):
            try:
                self.resync()
            except ApiException as e:
                logger.warning("Resync failed: %s %s", e.status, e.reason)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop(self):
        self._stop.set()
        self.queue.shutdown()

    def run(self):
        """Run watches and workers until ``stop`` is called."""
        logger.info(
            "Starting ChaosEngine controller (namespace=%s, workers=%d)",
            self.settings.watch_namespace or "<all>", self.settings.workers,
        )
        threads = [
            threading.Thread(
                target=self._watch_loop,
                args=("chaosengine", self._engine_stream, engine_key),
                name="watch-chaosengines", daemon=True,
            ),
            threading.Thread(
                target=self._watch_loop,
                args=("runner-pod", self._runner_stream, runner_pod_key),
                name="watch-runner-pods", daemon=True,
            ),
        ]
        if self.settings.resync_seconds:
            threads.append(threading.Thread(target=self._resync_loop, name="resync", daemon=True))
        for t in threads:
            t.start()

        with ThreadPoolExecutor(max_workers=self.settings.workers, thread_name_prefix="reconcile") as pool:
            for _ in range(self.settings.workers):
                pool.submit(self._worker)
            try:
                while not self._stop.wait(1.0):
                    pass
            finally:
                self.stop()
        logger.info("ChaosEngine controller stopped")
