"""Tests for the runner pod builder."""

import pytest

from chaosoperator.errors import InvalidSpec
from chaosoperator.models import ChaosEngine, EngineInfo
from chaosoperator.runner import (
    RUNNER_CONTAINER_NAME,
    RUNNER_ENV_NAMES,
    build_runner_pod,
    engine_selector,
    get_chaos_runner_env,
    runner_labels,
)


def _snapshot(obj, experiments=("exp-1",), targets="deployment:default:app=nginx", client_uuid="uuid-1"):
    return EngineInfo(
        instance=ChaosEngine(obj),
        targets=targets,
        app_experiments=list(experiments),
        client_uuid=client_uuid,
    )


class TestChaosRunnerEnv:
    """Tests for the runner environment contract."""

    def test_env_order_and_values(self):
        """Test the seven variables come in contract order with the right values."""
        engine = _snapshot(
            {
                "metadata": {"name": "Fake Engine", "namespace": "Fake NameSpace"},
                "spec": {
                    "chaosServiceAccount": "Fake Service Account",
                    "appinfo": {"applabel": "Fake Label", "appns": "Fake NameSpace", "appkind": "Fake Kind"},
                    "auxiliaryAppInfo": "ns1:name=percona,ns2:run=nginx",
                },
            },
            experiments=["fake string"],
            targets="fakeTargets",
        )
        client_uuid = "12345678-9012-3456-7890-123456789012"

        env = get_chaos_runner_env(engine, client_uuid)

        assert len(env) == 7
        assert [e.name for e in env] == list(RUNNER_ENV_NAMES)
        assert [e.value for e in env] == [
            "Fake Engine",
            "fakeTargets",
            "fake string",
            "Fake Service Account",
            "ns1:name=percona,ns2:run=nginx",
            client_uuid,
            "Fake NameSpace",
        ]

    def test_experiment_list_is_comma_joined(self, engine_factory):
        """Test EXPERIMENT_LIST joins every experiment name with commas."""
        engine = _snapshot(engine_factory(), experiments=["pod-delete", "pod-cpu-hog", "disk-fill"])

        env = {e.name: e.value for e in get_chaos_runner_env(engine, "u")}

        assert env["EXPERIMENT_LIST"] == "pod-delete,pod-cpu-hog,disk-fill"

    def test_empty_optional_values_are_kept(self, engine_factory):
        """Test empty service account and app info still produce their entries."""
        obj = engine_factory(service_account="")
        del obj["spec"]["auxiliaryAppInfo"]
        engine = _snapshot(obj, targets="")

        env = get_chaos_runner_env(engine, "u")

        assert len(env) == 7
        values = {e.name: e.value for e in env}
        assert values["CHAOS_SVC_ACC"] == ""
        assert values["AUXILIARY_APPINFO"] == ""
        assert values["TARGETS"] == ""


class TestBuildRunnerPod:
    """Tests for build_runner_pod."""

    def test_pod_shape(self, engine_factory):
        """Test name, namespace, service account and container of the runner pod."""
        engine = _snapshot(engine_factory(name="test-runner", namespace="test", service_account="fake-serviceAccount"))

        pod = build_runner_pod(engine)

        assert pod.metadata.name == "test-runner-runner"
        assert pod.metadata.namespace == "test"
        assert pod.spec.service_account_name == "fake-serviceAccount"
        assert pod.spec.restart_policy == "Never"
        assert len(pod.spec.containers) == 1
        container = pod.spec.containers[0]
        assert container.name == RUNNER_CONTAINER_NAME
        assert container.image == "litmuschaos/chaos-runner:3.0.0"
        assert [e.name for e in container.env] == list(RUNNER_ENV_NAMES)

    def test_client_uuid_comes_from_snapshot(self, engine_factory):
        """Test CLIENT_UUID equals the snapshot correlation id."""
        engine = _snapshot(engine_factory(), client_uuid="corr-42")

        pod = build_runner_pod(engine)

        env = {e.name: e.value for e in pod.spec.containers[0].env}
        assert env["CLIENT_UUID"] == "corr-42"

    def test_command_passthrough(self, engine_factory):
        """Test a declared command is passed verbatim and args stay unset."""
        engine = _snapshot(engine_factory(command=["cmd1", "cmd2"]))

        container = build_runner_pod(engine).spec.containers[0]

        assert container.command == ["cmd1", "cmd2"]
        assert container.args is None

    def test_args_passthrough(self, engine_factory):
        """Test declared args are passed verbatim and command stays unset."""
        engine = _snapshot(engine_factory(args=["args1", "args2"]))

        container = build_runner_pod(engine).spec.containers[0]

        assert container.args == ["args1", "args2"]
        assert container.command is None

    @pytest.mark.parametrize("policy", ["Always", "IfNotPresent", "Never"])
    def test_image_pull_policy_passthrough(self, engine_factory, policy):
        """Test every pull policy is passed through unmodified."""
        engine = _snapshot(engine_factory(imagePullPolicy=policy))

        container = build_runner_pod(engine).spec.containers[0]

        assert container.image_pull_policy == policy

    def test_image_pull_policy_unset(self, engine_factory):
        """Test no pull policy is defaulted when none is declared."""
        container = build_runner_pod(_snapshot(engine_factory())).spec.containers[0]

        assert container.image_pull_policy is None

    def test_empty_service_account_uses_cluster_default(self, engine_factory):
        """Test an empty service account leaves the field unset."""
        pod = build_runner_pod(_snapshot(engine_factory(service_account="")))

        assert pod.spec.service_account_name is None

    def test_labels_allow_discovery(self, engine_factory):
        """Test the runner carries the labels the cleanup selector matches."""
        engine = _snapshot(engine_factory(name="engine-a"))

        pod = build_runner_pod(engine)

        labels = pod.metadata.labels
        assert labels == runner_labels(engine)
        key, value = engine_selector("engine-a").split("=")
        assert labels[key] == value
        assert labels["chaosUID"] == "uid-engine-a"
        assert labels["app.kubernetes.io/component"] == "chaos-runner"


class TestRunnerValidation:
    """Tests for the validation performed before a runner is built."""

    def test_missing_identity(self):
        """Test an engine without name and namespace is rejected."""
        engine = _snapshot({"metadata": {}})

        with pytest.raises(InvalidSpec, match="missing identity"):
            build_runner_pod(engine)

    def test_missing_namespace_only(self, engine_factory):
        """Test a missing namespace alone is enough to fail identity."""
        obj = engine_factory()
        del obj["metadata"]["namespace"]

        with pytest.raises(InvalidSpec, match="missing identity"):
            build_runner_pod(_snapshot(obj))

    def test_missing_runner_image(self):
        """Test an engine without runner component is rejected."""
        engine = _snapshot({
            "metadata": {"name": "test-runner", "namespace": "test"},
            "spec": {"chaosServiceAccount": "fake-serviceAccount"},
        })

        with pytest.raises(InvalidSpec, match="missing runner image"):
            build_runner_pod(engine)

    def test_no_experiments(self, engine_factory):
        """Test an engine with an image but no experiments is rejected."""
        engine = _snapshot(engine_factory(experiments=()), experiments=())

        with pytest.raises(InvalidSpec, match="no experiments declared"):
            build_runner_pod(engine)

    def test_first_failing_check_wins(self):
        """Test the image check reports before the experiment check."""
        engine = _snapshot(
            {
                "metadata": {"name": "test-runner", "namespace": "test"},
                "spec": {"components": {"runner": {"image": ""}}},
            },
            experiments=(),
        )

        with pytest.raises(InvalidSpec) as exc_info:
            build_runner_pod(engine)

        assert exc_info.value.reason == "missing runner image"
