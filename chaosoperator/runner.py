"""Runner pod construction for a ChaosEngine.

The runner is a single pod per engine which in turn launches one pod per
experiment. Its environment is the compatibility surface with the runner
image: names, order and count of the variables must not change.
"""

from typing import Dict, List

from kubernetes import client

from chaosoperator.errors import InvalidSpec
from chaosoperator.models import EngineInfo


RUNNER_CONTAINER_NAME = "chaos-runner"
RUNNER_COMPONENT = "chaos-runner"

# Label carried by the runner and every experiment pod it spawns
ENGINE_LABEL = "chaosengine"
COMPONENT_LABEL = "app.kubernetes.io/component"
PART_OF_LABEL = "app.kubernetes.io/part-of"

RUNNER_ENV_NAMES = (
    "CHAOSENGINE",
    "TARGETS",
    "EXPERIMENT_LIST",
    "CHAOS_SVC_ACC",
    "AUXILIARY_APPINFO",
    "CLIENT_UUID",
    "CHAOS_NAMESPACE",
)


def runner_pod_name(engine_name: str) -> str:
    return f"{engine_name}-runner"


def engine_selector(engine_name: str) -> str:
    """Label selector matching the runner and experiment pods of an engine."""
    return f"{ENGINE_LABEL}={engine_name}"


def runner_labels(engine: EngineInfo) -> Dict[str, str]:
    instance = engine.instance
    labels = {
        "app": instance.name,
        ENGINE_LABEL: instance.name,
        COMPONENT_LABEL: RUNNER_COMPONENT,
        PART_OF_LABEL: "litmus",
    }
    if instance.uid:
        labels["chaosUID"] = instance.uid
    return labels


def validate_runner_spec(engine: EngineInfo):
    """Check everything the runner pod needs before anything is built.

    Raises:
        InvalidSpec: The first failing check, in a fixed order.
    """
    instance = engine.instance
    if not instance.name or not instance.namespace:
        raise InvalidSpec("missing identity")
    if not instance.runner.image:
        raise InvalidSpec("missing runner image")
    if not engine.app_experiments:
        raise InvalidSpec("no experiments declared")


def get_chaos_runner_env(engine: EngineInfo, client_uuid: str) -> List[client.V1EnvVar]:
    """Environment of the runner container, in contract order."""
    instance = engine.instance
    values = (
        instance.name,
        engine.targets,
        ",".join(engine.app_experiments),
        instance.service_account,
        instance.auxiliary_app_info,
        client_uuid,
        instance.namespace,
    )
    return [client.V1EnvVar(name=name, value=value) for name, value in zip(RUNNER_ENV_NAMES, values)]


def build_runner_pod(engine: EngineInfo) -> client.V1Pod:
    """Build the runner pod for an engine snapshot.

    Args:
        engine: Snapshot of the engine for this pass.

    Returns:
        The pod to hand to the store.

    Raises:
        InvalidSpec: If the engine lacks identity, runner image or experiments.
    """
    validate_runner_spec(engine)

    instance = engine.instance
    runner = instance.runner

    container = client.V1Container(
        name=RUNNER_CONTAINER_NAME,
        image=runner.image,
        command=list(runner.command) or None,
        args=list(runner.args) or None,
        image_pull_policy=runner.image_pull_policy or None,
        env=get_chaos_runner_env(engine, engine.client_uuid),
    )

    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=runner_pod_name(instance.name),
            namespace=instance.namespace,
            labels=runner_labels(engine),
        ),
        spec=client.V1PodSpec(
            service_account_name=instance.service_account or None,
            restart_policy="Never",
            containers=[container],
        ),
    )
