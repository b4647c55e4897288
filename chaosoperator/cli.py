"""chaosoperator CLI - runs the ChaosEngine controller and its helpers."""

import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml
from kubernetes import client

from chaosoperator.config import OperatorConfig, ValidationError, load_config
from chaosoperator.deadline import Deadline
from chaosoperator.errors import InvalidSpec, TransientStoreError
from chaosoperator.events import KubernetesEventRecorder, LoggingEventRecorder
from chaosoperator.models import ChaosEngine, NamespacedName
from chaosoperator.reconciler import ChaosEngineReconciler
from chaosoperator.runner import build_runner_pod
from chaosoperator.scheme import register_engine_kind
from chaosoperator.snapshot import snapshot_from_engine
from chaosoperator.store import KubernetesStore, load_kube_config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _setup_logging(level: str):
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def _load_settings(config_path: Optional[str], **overrides) -> OperatorConfig:
    try:
        return load_config(config_path, overrides=overrides)
    except (FileNotFoundError, ValidationError) as e:
        click.echo(f"Error: {e}", err=True)
        for detail in getattr(e, "errors", []):
            click.echo(f"  - {detail}", err=True)
        sys.exit(2)


def _build_reconciler(settings: OperatorConfig) -> ChaosEngineReconciler:
    load_kube_config(settings.kubeconfig)
    engine_kind = register_engine_kind()
    store = KubernetesStore(engine_kind=engine_kind)
    if settings.record_events:
        recorder = KubernetesEventRecorder(
            engine_kind=engine_kind, request_timeout=settings.request_timeout_seconds
        )
    else:
        recorder = LoggingEventRecorder()
    return ChaosEngineReconciler(
        store,
        recorder=recorder,
        client_uuid=settings.client_uuid,
        grace_period_seconds=settings.grace_period_seconds,
    )


def _load_engines(path: Path) -> List[ChaosEngine]:
    """Read every ChaosEngine document from a YAML file."""
    engines = []
    for doc in yaml.safe_load_all(path.read_text()):
        if doc and doc.get("kind") == "ChaosEngine":
            engines.append(ChaosEngine(doc))
    return engines


@click.group()
@click.version_option()
def main():
    """chaosoperator - reconciles LitmusChaos ChaosEngine resources.

    Creates a runner pod for every active ChaosEngine, tracks it to
    completion and removes runner and experiment pods on stop or delete.
    """
    pass


@main.command()
@click.option("--config", "config_path", type=click.Path(), help="Operator configuration YAML")
@click.option("--namespace", "-n", default=None, help="Only watch this namespace")
@click.option("--workers", "-w", type=int, default=None, help="Concurrent reconciliations")
@click.option("--kubeconfig", type=click.Path(), default=None, help="Path to a kubeconfig file")
def run(config_path: Optional[str], namespace: Optional[str], workers: Optional[int], kubeconfig: Optional[str]):
    """Start the controller and reconcile until interrupted."""
    from chaosoperator.controller import ChaosEngineController

    settings = _load_settings(
        config_path, watchNamespace=namespace, workers=workers, kubeconfig=kubeconfig
    )
    _setup_logging(settings.log_level)

    reconciler = _build_reconciler(settings)
    controller = ChaosEngineController(reconciler, settings)

    def _handle_signal(signum, frame):
        click.echo(f"Received signal {signum}, shutting down...")
        controller.stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    controller.resync()
    controller.run()


@main.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default", help="ChaosEngine namespace")
@click.option("--config", "config_path", type=click.Path(), help="Operator configuration YAML")
@click.option("--kubeconfig", type=click.Path(), default=None, help="Path to a kubeconfig file")
def reconcile(name: str, namespace: str, config_path: Optional[str], kubeconfig: Optional[str]):
    """Run a single reconciliation pass for one ChaosEngine."""
    settings = _load_settings(config_path, kubeconfig=kubeconfig)
    _setup_logging(settings.log_level)

    reconciler = _build_reconciler(settings)
    deadline = Deadline(
        timeout=settings.reconcile_timeout_seconds,
        request_timeout=settings.request_timeout_seconds,
    )
    ref = NamespacedName(namespace=namespace, name=name)
    try:
        result = reconciler.reconcile(ref, deadline)
    except TransientStoreError as e:
        click.echo(f"Error: {e} (try again later)", err=True)
        sys.exit(1)

    click.echo(f"Reconciled {ref}: requeue={result.requeue}"
               + (f" after {result.requeue_after}s" if result.requeue_after else ""))


@main.command("render-runner")
@click.argument("engine_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--namespace", "-n", default=None, help="Namespace for engines without one")
@click.option("--client-uuid", default="00000000-0000-0000-0000-000000000000", show_default=True,
              help="Correlation id to place in CLIENT_UUID")
def render_runner(engine_file: str, namespace: Optional[str], client_uuid: str):
    """Print the runner pod the controller would create for ENGINE_FILE.

    Works offline; nothing is sent to the cluster.
    """
    engines = _load_engines(Path(engine_file))
    if not engines:
        click.echo(f"Error: no ChaosEngine found in {engine_file}", err=True)
        sys.exit(1)

    serializer = client.ApiClient()
    manifests: List[Dict[str, Any]] = []
    failed = False
    for engine in engines:
        if namespace and not engine.namespace:
            engine.metadata["namespace"] = namespace
        try:
            pod = build_runner_pod(snapshot_from_engine(engine, client_uuid))
        except InvalidSpec as e:
            click.echo(f"Error: {engine.name or '<unnamed>'}: {e}", err=True)
            failed = True
            continue
        manifests.append(serializer.sanitize_for_serialization(pod))

    if manifests:
        click.echo(yaml.safe_dump_all(manifests, default_flow_style=False, sort_keys=False), nl=False)
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
