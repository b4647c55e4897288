"""Engine snapshot construction."""

from chaosoperator.deadline import Deadline
from chaosoperator.models import AppInfo, ChaosEngine, EngineInfo, NamespacedName
from chaosoperator.store import ClusterStore


def format_targets(app_info: AppInfo, default_namespace: str) -> str:
    """Describe the targeted application instances as ``kind:namespace:label``.

    An empty appns falls back to the engine namespace. Engines that select
    nothing (no label and no kind) get an empty description.
    """
    if not app_info.applabel and not app_info.appkind:
        return ""
    namespace = app_info.appns or default_namespace
    return f"{app_info.appkind}:{namespace}:{app_info.applabel}"


def snapshot_from_engine(engine: ChaosEngine, client_uuid: str) -> EngineInfo:
    """Derive the per-pass snapshot from an already fetched engine."""
    return EngineInfo(
        instance=engine,
        targets=format_targets(engine.app_info, engine.namespace),
        app_experiments=list(engine.experiment_names),
        client_uuid=client_uuid,
    )


def get_engine_snapshot(
    store: ClusterStore, ref: NamespacedName, client_uuid: str, deadline: Deadline
) -> EngineInfo:
    """Fetch the ChaosEngine behind ``ref`` and build its snapshot.

    Raises:
        NotFound: The engine no longer exists; callers treat this as a delete.
    """
    engine = store.get_engine(ref, deadline)
    return snapshot_from_engine(engine, client_uuid)
