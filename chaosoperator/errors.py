"""Error taxonomy for the ChaosEngine reconciler."""

from typing import List, Optional


class ChaosOperatorError(Exception):
    """Base class for every error raised by the operator."""


class NotFound(ChaosOperatorError):
    """The requested object does not exist in the cluster."""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExists(ChaosOperatorError):
    """A create call hit an object with the same name."""


class Conflict(ChaosOperatorError):
    """An update was rejected because the resourceVersion is stale."""


class TransientStoreError(ChaosOperatorError):
    """Timeouts, throttling and connectivity problems; safe to retry later."""


class InvalidSpec(ChaosOperatorError):
    """The ChaosEngine spec cannot produce a runner until it is edited."""

    def __init__(self, reason: str, errors: Optional[List[str]] = None):
        super().__init__(f"InvalidSpec: {reason}")
        self.reason = reason
        self.errors = errors or []
