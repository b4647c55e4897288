"""Removal of the runner and experiment pods belonging to a ChaosEngine.

Both modes delete by label selector in the engine namespace, so they work
even when the engine object itself is already gone. Deleting something that
is already absent is success.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from chaosoperator.deadline import Deadline
from chaosoperator.errors import NotFound
from chaosoperator.runner import engine_selector
from chaosoperator.store import ClusterStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """Outcome of one cleanup call.

    ``remaining`` counts matching pods that are still present and not yet
    terminating. A non-zero value is a soft condition: the next pass retries.
    """

    removed: int = 0
    remaining: int = 0

    @property
    def complete(self) -> bool:
        return self.remaining == 0


def _remove_chaos_pods(
    store: ClusterStore,
    namespace: str,
    engine_name: str,
    deadline: Deadline,
    grace_period_seconds: Optional[int],
) -> CleanupResult:
    selector = engine_selector(engine_name)
    try:
        removed = store.delete_pods(
            namespace, selector, deadline, grace_period_seconds=grace_period_seconds
        )
        leftovers = store.list_pods(namespace, selector, deadline)
    except NotFound:
        # The namespace itself is gone
        return CleanupResult()

    remaining = sum(
        1 for pod in leftovers
        if pod.metadata is None or pod.metadata.deletion_timestamp is None
    )
    result = CleanupResult(removed=removed, remaining=remaining)
    if not result.complete:
        logger.warning(
            "Cleanup of %s/%s left %d pod(s) behind, will retry on the next pass",
            namespace, engine_name, remaining,
        )
    return result


def gracefully_remove_chaos_resources(
    store: ClusterStore,
    namespace: str,
    engine_name: str,
    deadline: Deadline,
    grace_period_seconds: Optional[int] = None,
) -> CleanupResult:
    """Remove the runner and experiment pods, letting them shut down cleanly.

    Args:
        store: Cluster object store.
        namespace: Engine namespace.
        engine_name: Engine name, used for the label selector.
        deadline: Bound for the store round trips.
        grace_period_seconds: Termination grace period; None keeps the pod's own.
    """
    logger.info("Gracefully removing chaos resources of %s/%s", namespace, engine_name)
    return _remove_chaos_pods(store, namespace, engine_name, deadline, grace_period_seconds)


def force_remove_chaos_resources(
    store: ClusterStore,
    namespace: str,
    engine_name: str,
    deadline: Deadline,
) -> CleanupResult:
    """Remove the runner and experiment pods immediately.

    Used when the engine is deleted or already gone, so it never reads the
    engine and ignores whatever state the pods are in.
    """
    logger.info("Force removing chaos resources of %s/%s", namespace, engine_name)
    return _remove_chaos_pods(store, namespace, engine_name, deadline, grace_period_seconds=0)
