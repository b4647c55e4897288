"""Decision table for the ChaosEngine lifecycle.

``decide`` maps (desired state, observed status, runner health) to the one
action the reconciler performs in this pass and the status it records
afterwards. It has no side effects.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from kubernetes import client

from chaosoperator.models import EngineState, EngineStatus
from chaosoperator.runner import RUNNER_CONTAINER_NAME


class RunnerHealth(str, Enum):
    """What the runner pod looks like right now."""

    ABSENT = "absent"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminated(self) -> bool:
        return self in (RunnerHealth.SUCCEEDED, RunnerHealth.FAILED)


class Action(str, Enum):
    """Side effect the reconciler performs for a transition."""

    NONE = "none"
    CREATE_RUNNER = "create-runner"
    RESTART_RUNNER = "restart-runner"
    FINALIZE = "finalize"
    GRACEFUL_TEARDOWN = "graceful-teardown"


@dataclass(frozen=True)
class Transition:
    action: Action
    next_status: EngineStatus


_ANY = None

_TABLE: Dict[Tuple[EngineState, EngineStatus, Optional[RunnerHealth]], Transition] = {
    (EngineState.STOP, EngineStatus.INITIALIZED, _ANY): Transition(Action.GRACEFUL_TEARDOWN, EngineStatus.STOPPED),
    (EngineState.STOP, EngineStatus.RUNNING, _ANY): Transition(Action.GRACEFUL_TEARDOWN, EngineStatus.STOPPED),
    (EngineState.STOP, EngineStatus.COMPLETED, _ANY): Transition(Action.GRACEFUL_TEARDOWN, EngineStatus.STOPPED),
    (EngineState.STOP, EngineStatus.STOPPED, _ANY): Transition(Action.NONE, EngineStatus.STOPPED),
    (EngineState.ACTIVE, EngineStatus.INITIALIZED, _ANY): Transition(Action.CREATE_RUNNER, EngineStatus.RUNNING),
    (EngineState.ACTIVE, EngineStatus.STOPPED, _ANY): Transition(Action.CREATE_RUNNER, EngineStatus.RUNNING),
    (EngineState.ACTIVE, EngineStatus.RUNNING, RunnerHealth.ABSENT): Transition(Action.RESTART_RUNNER, EngineStatus.RUNNING),
    (EngineState.ACTIVE, EngineStatus.RUNNING, RunnerHealth.RUNNING): Transition(Action.NONE, EngineStatus.RUNNING),
    (EngineState.ACTIVE, EngineStatus.RUNNING, RunnerHealth.SUCCEEDED): Transition(Action.FINALIZE, EngineStatus.COMPLETED),
    (EngineState.ACTIVE, EngineStatus.RUNNING, RunnerHealth.FAILED): Transition(Action.FINALIZE, EngineStatus.COMPLETED),
    (EngineState.ACTIVE, EngineStatus.COMPLETED, _ANY): Transition(Action.NONE, EngineStatus.COMPLETED),
}


def decide(
    desired: EngineState, observed: Optional[EngineStatus], runner: RunnerHealth
) -> Transition:
    """Return the transition for the given state triple.

    An engine without a status yet is treated as Initialized.
    """
    observed = observed or EngineStatus.INITIALIZED
    transition = _TABLE.get((desired, observed, runner)) or _TABLE.get((desired, observed, _ANY))
    if transition is None:
        raise ValueError(f"No transition for {desired.value}/{observed.value}/{runner.value}")
    return transition


def runner_health(pod: Optional[client.V1Pod]) -> RunnerHealth:
    """Classify the runner pod from its container status.

    A terminated runner container is SUCCEEDED on exit code 0 and FAILED
    otherwise; anything else, including a pod with no status yet, is RUNNING.
    """
    if pod is None:
        return RunnerHealth.ABSENT
    statuses = (pod.status.container_statuses if pod.status else None) or []
    for status in statuses:
        if status.name != RUNNER_CONTAINER_NAME:
            continue
        terminated = status.state.terminated if status.state else None
        if terminated is None:
            return RunnerHealth.RUNNING
        if terminated.exit_code == 0:
            return RunnerHealth.SUCCEEDED
        return RunnerHealth.FAILED
    if pod.status and pod.status.phase == "Succeeded":
        return RunnerHealth.SUCCEEDED
    if pod.status and pod.status.phase == "Failed":
        return RunnerHealth.FAILED
    return RunnerHealth.RUNNING


def runner_exit_code(pod: Optional[client.V1Pod]) -> Optional[int]:
    """Exit code of the terminated runner container, if there is one."""
    if pod is None or pod.status is None:
        return None
    for status in pod.status.container_statuses or []:
        if status.name == RUNNER_CONTAINER_NAME and status.state and status.state.terminated:
            return status.state.terminated.exit_code
    return None
