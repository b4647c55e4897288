"""Event recording against ChaosEngine resources."""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from chaosoperator.models import ChaosEngine
from chaosoperator.scheme import ResourceKind, register_engine_kind

logger = logging.getLogger(__name__)

NORMAL = "Normal"
WARNING = "Warning"

REASON_INITIALIZED = "ChaosEngineInitialized"
REASON_RUNNER_CREATED = "ChaosEngineRunnerCreated"
REASON_RESTARTED = "ChaosEngineRestarted"
REASON_COMPLETED = "ChaosEngineCompleted"
REASON_STOPPED = "ChaosEngineStopped"
REASON_DELETED = "ChaosEngineDeleted"
REASON_INVALID_SPEC = "InvalidSpec"
REASON_RUNNER_FAILED = "RunnerFailed"
REASON_CLEANUP_INCOMPLETE = "CleanupIncomplete"

COMPONENT = "chaos-operator"
EVENT_REQUEST_TIMEOUT_SECONDS = 10.0


class EventRecorder:
    """Records human-readable events about an engine."""

    def event(self, engine: ChaosEngine, event_type: str, reason: str, message: str):
        raise NotImplementedError


class LoggingEventRecorder(EventRecorder):
    """Writes events to the log only."""

    def event(self, engine: ChaosEngine, event_type: str, reason: str, message: str):
        level = logging.WARNING if event_type == WARNING else logging.INFO
        logger.log(level, "%s %s: %s", engine.reference, reason, message)


class FakeRecorder(EventRecorder):
    """Keeps events in memory as ``"<type> <reason> <message>"`` strings."""

    def __init__(self):
        self.events: List[str] = []
        self.recorded: List[Tuple[str, str, str, str]] = []

    def event(self, engine: ChaosEngine, event_type: str, reason: str, message: str):
        self.events.append(f"{event_type} {reason} {message}")
        self.recorded.append((engine.reference.key, event_type, reason, message))

    def reasons(self) -> List[str]:
        return [r[2] for r in self.recorded]


class KubernetesEventRecorder(EventRecorder):
    """Creates core/v1 Events involving the ChaosEngine.

    Recording is best effort: an event that cannot be written is logged and
    dropped, it never fails a reconciliation.
    """

    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        engine_kind: Optional[ResourceKind] = None,
        request_timeout: float = EVENT_REQUEST_TIMEOUT_SECONDS,
    ):
        self.core_api = core_api or client.CoreV1Api()
        self.engine_kind = engine_kind or register_engine_kind()
        self.request_timeout = request_timeout

    def event(self, engine: ChaosEngine, event_type: str, reason: str, message: str):
        now = datetime.now(timezone.utc)
        body = client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                generate_name=f"{engine.name}.",
                namespace=engine.namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=self.engine_kind.api_version,
                kind=self.engine_kind.kind,
                name=engine.name,
                namespace=engine.namespace,
                uid=engine.uid or None,
                resource_version=engine.resource_version or None,
            ),
            type=event_type,
            reason=reason,
            message=message,
            source=client.V1EventSource(component=COMPONENT),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )
        try:
            self.core_api.create_namespaced_event(
                engine.namespace, body, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            logger.warning("Could not record event %s on %s: %s", reason, engine.reference, e.reason)
        except urllib3.exceptions.HTTPError as e:
            logger.warning("Could not record event %s on %s: %s", reason, engine.reference, e)
