"""ChaosEngine reconciler.

One call to ``ChaosEngineReconciler.reconcile`` is one pass of the control
loop for one engine. A pass reads fresh state, performs at most one
convergent action and writes the observed status back only when it changed.
It never sleeps or retries internally: anything transient is left to the
trigger layer, which calls again later.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple

from kubernetes import client

from chaosoperator import events
from chaosoperator.cleanup import (
    CleanupResult,
    force_remove_chaos_resources,
    gracefully_remove_chaos_resources,
)
from chaosoperator.deadline import Deadline
from chaosoperator.errors import AlreadyExists, Conflict, InvalidSpec, NotFound
from chaosoperator.models import EngineInfo, EngineStatus, NamespacedName
from chaosoperator.runner import build_runner_pod, runner_pod_name
from chaosoperator.snapshot import get_engine_snapshot
from chaosoperator.store import ClusterStore
from chaosoperator.transitions import (
    Action,
    RunnerHealth,
    decide,
    runner_exit_code,
    runner_health,
)

logger = logging.getLogger(__name__)

# Delay before looking again at a runner pod that is still shutting down
STALE_RUNNER_REQUEUE_SECONDS = 5.0


@dataclass
class ReconcileResult:
    """What the trigger layer should do after a pass."""

    requeue: bool = False
    requeue_after: Optional[float] = None


class ChaosEngineReconciler:
    """Drives ChaosEngine resources toward their declared state."""

    def __init__(
        self,
        store: ClusterStore,
        recorder: Optional[events.EventRecorder] = None,
        client_uuid: Optional[str] = None,
        grace_period_seconds: Optional[int] = None,
    ):
        """Initialize the reconciler.

        Args:
            store: Cluster object store.
            recorder: Event recorder; events go to the log if omitted.
            client_uuid: Correlation id handed to every runner. Generated once
                per process when omitted.
            grace_period_seconds: Grace period for graceful teardown.
        """
        self.store = store
        self.recorder = recorder or events.LoggingEventRecorder()
        self.client_uuid = client_uuid or str(uuid.uuid4())
        self.grace_period_seconds = grace_period_seconds

    def reconcile(
        self, request: NamespacedName, deadline: Optional[Deadline] = None
    ) -> ReconcileResult:
        """Run one pass for the engine behind ``request``.

        Raises:
            TransientStoreError: The store could not be reached in time; the
                caller should retry with backoff.
        """
        deadline = deadline or Deadline()

        try:
            engine = get_engine_snapshot(self.store, request, self.client_uuid, deadline)
        except NotFound:
            logger.info("ChaosEngine %s not found, removing any chaos resources left", request)
            result = force_remove_chaos_resources(
                self.store, request.namespace, request.name, deadline
            )
            return ReconcileResult(requeue=not result.complete)

        try:
            if engine.instance.is_being_deleted:
                return self.reconcile_for_delete(engine, deadline)
            return self.reconcile_for_state(engine, deadline)
        except Conflict as e:
            logger.info("ChaosEngine %s changed during the pass (%s), requeueing", request, e)
            return ReconcileResult(requeue=True)
        except InvalidSpec as e:
            # The API server refused the write; retrying the same body cannot succeed
            logger.warning("ChaosEngine %s write rejected: %s", request, e.reason)
            return ReconcileResult()

    def reconcile_for_delete(self, engine: EngineInfo, deadline: Deadline) -> ReconcileResult:
        """Force-remove every dependent pod, then release the finalizer.

        The observed status is left as it is: the resource is going away.
        """
        instance = engine.instance
        result = force_remove_chaos_resources(
            self.store, instance.namespace, instance.name, deadline
        )
        if not result.complete:
            self.recorder.event(
                instance, events.WARNING, events.REASON_CLEANUP_INCOMPLETE,
                f"{result.remaining} chaos pod(s) still present, keeping the finalizer",
            )
            return ReconcileResult(requeue=True)

        if instance.remove_finalizer():
            try:
                self.store.update_engine(instance, deadline)
            except NotFound:
                logger.info("ChaosEngine %s already removed", instance.reference)
                return ReconcileResult()
            self.recorder.event(
                instance, events.NORMAL, events.REASON_DELETED,
                f"Removed {result.removed} chaos pod(s), released finalizer",
            )
        return ReconcileResult()

    def reconcile_for_state(self, engine: EngineInfo, deadline: Deadline) -> ReconcileResult:
        """Classify the engine and execute the single transition it calls for."""
        instance = engine.instance
        pending: List[Tuple[str, str, str]] = []
        dirty = False

        try:
            if instance.engine_status is None:
                instance.engine_status = EngineStatus.INITIALIZED
                pending.append((events.NORMAL, events.REASON_INITIALIZED, "ChaosEngine initialized"))
                dirty = True
            if instance.add_finalizer():
                dirty = True

            runner = self._get_runner(engine, deadline)
            health = runner_health(runner)
            transition = decide(instance.engine_state, instance.engine_status, health)
            logger.debug(
                "ChaosEngine %s: %s/%s runner=%s -> %s (%s)",
                instance.reference, instance.engine_state.value, instance.engine_status.value,
                health.value, transition.action.value, transition.next_status.value,
            )

            if transition.action in (Action.CREATE_RUNNER, Action.RESTART_RUNNER):
                if self._runner_is_stale(runner, health, instance.engine_status):
                    # Leftover from a run before the stop: clear it before starting a new one
                    result = self._remove_stale_runner(engine, runner, deadline)
                    self._persist(engine, dirty, pending, deadline)
                    if not result.complete:
                        self.recorder.event(
                            instance, events.WARNING, events.REASON_CLEANUP_INCOMPLETE,
                            f"{result.remaining} chaos pod(s) from the previous run still present",
                        )
                        return ReconcileResult(requeue=True)
                    return ReconcileResult(requeue=True, requeue_after=STALE_RUNNER_REQUEUE_SECONDS)
                created = self._create_runner(engine, deadline)
                if not created:
                    pending.append((
                        events.NORMAL, events.REASON_RUNNER_CREATED,
                        f"Adopted existing runner pod {engine.runner_name}",
                    ))
                elif transition.action is Action.RESTART_RUNNER:
                    pending.append((
                        events.NORMAL, events.REASON_RESTARTED,
                        f"Runner pod was missing, recreated {engine.runner_name}",
                    ))
                else:
                    pending.append((
                        events.NORMAL, events.REASON_RUNNER_CREATED,
                        f"Created runner pod {engine.runner_name}",
                    ))

            elif transition.action is Action.FINALIZE:
                pending.extend(self._completion_events(runner, health))

            elif transition.action is Action.GRACEFUL_TEARDOWN:
                result = gracefully_remove_chaos_resources(
                    self.store, instance.namespace, instance.name, deadline,
                    grace_period_seconds=self.grace_period_seconds,
                )
                if not result.complete:
                    self._persist(engine, dirty, pending, deadline)
                    self.recorder.event(
                        instance, events.WARNING, events.REASON_CLEANUP_INCOMPLETE,
                        f"{result.remaining} chaos pod(s) still present",
                    )
                    return ReconcileResult(requeue=True)
                pending.append((
                    events.NORMAL, events.REASON_STOPPED,
                    f"Stopped, removed {result.removed} chaos pod(s)",
                ))

            if instance.engine_status is not transition.next_status:
                instance.engine_status = transition.next_status
                dirty = True

            self._persist(engine, dirty, pending, deadline)
        except InvalidSpec as e:
            logger.warning("ChaosEngine %s has an invalid spec: %s", instance.reference, e.reason)
            self.recorder.event(instance, events.WARNING, events.REASON_INVALID_SPEC, str(e))
        return ReconcileResult()

    def _persist(
        self,
        engine: EngineInfo,
        dirty: bool,
        pending: List[Tuple[str, str, str]],
        deadline: Deadline,
    ):
        """Write the engine back if anything changed, then emit queued events."""
        if dirty:
            self.store.update_engine(engine.instance, deadline)
        for event_type, reason, message in pending:
            self.recorder.event(engine.instance, event_type, reason, message)

    def _get_runner(self, engine: EngineInfo, deadline: Deadline) -> Optional[client.V1Pod]:
        instance = engine.instance
        try:
            return self.store.get_pod(instance.namespace, runner_pod_name(instance.name), deadline)
        except NotFound:
            return None

    def _create_runner(self, engine: EngineInfo, deadline: Deadline) -> bool:
        """Create the runner pod; returns False when it already existed."""
        pod = build_runner_pod(engine)
        try:
            self.store.create_pod(pod, deadline)
        except AlreadyExists:
            # Created by an earlier pass whose status write did not land
            logger.info("Runner pod %s/%s already exists, adopting it", pod.metadata.namespace, pod.metadata.name)
            return False
        logger.info("Created runner pod %s/%s", pod.metadata.namespace, pod.metadata.name)
        return True

    @staticmethod
    def _runner_is_stale(
        runner: Optional[client.V1Pod], health: RunnerHealth, observed: Optional[EngineStatus]
    ) -> bool:
        """Only a runner left over from before a stop is stale.

        Any other runner found on the create path was started by this engine
        in a pass whose status write was lost, and is adopted instead.
        """
        if runner is None or observed is not EngineStatus.STOPPED:
            return False
        if runner.metadata is not None and runner.metadata.deletion_timestamp is not None:
            return True
        return health.terminated

    def _remove_stale_runner(
        self, engine: EngineInfo, runner: client.V1Pod, deadline: Deadline
    ) -> CleanupResult:
        instance = engine.instance
        if runner.metadata.deletion_timestamp is not None:
            logger.info("Runner pod of %s is still terminating", instance.reference)
            return CleanupResult()
        return gracefully_remove_chaos_resources(
            self.store, instance.namespace, instance.name, deadline,
            grace_period_seconds=self.grace_period_seconds,
        )

    @staticmethod
    def _completion_events(
        runner: Optional[client.V1Pod], health: RunnerHealth
    ) -> List[Tuple[str, str, str]]:
        pending = []
        if health is RunnerHealth.FAILED:
            pending.append((
                events.WARNING, events.REASON_RUNNER_FAILED,
                f"Runner exited with code {runner_exit_code(runner)}",
            ))
        pending.append((events.NORMAL, events.REASON_COMPLETED, "ChaosEngine completed"))
        return pending
