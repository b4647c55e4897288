"""Operator configuration loader.

Configuration is layered: built-in defaults, then an optional YAML file,
then environment variables. The result is validated before use.
"""

import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from chaosoperator.config.validator import ValidationError, validate_config


DEFAULTS: Dict[str, Any] = {
    "watchNamespace": "",
    "workers": 4,
    "resyncSeconds": 300,
    "requestTimeoutSeconds": 30,
    "reconcileTimeoutSeconds": 120,
    "gracePeriodSeconds": 30,
    "logLevel": "INFO",
    "recordEvents": True,
}

# Environment variable -> (config key, parser)
ENV_OVERRIDES = {
    "WATCH_NAMESPACE": ("watchNamespace", str),
    "CLIENT_UUID": ("clientUUID", str),
    "CHAOS_OPERATOR_WORKERS": ("workers", int),
    "CHAOS_OPERATOR_RESYNC_SECONDS": ("resyncSeconds", float),
    "CHAOS_OPERATOR_REQUEST_TIMEOUT": ("requestTimeoutSeconds", float),
    "CHAOS_OPERATOR_RECONCILE_TIMEOUT": ("reconcileTimeoutSeconds", float),
    "CHAOS_OPERATOR_GRACE_PERIOD": ("gracePeriodSeconds", int),
    "LOG_LEVEL": ("logLevel", str.upper),
    "CHAOS_OPERATOR_RECORD_EVENTS": ("recordEvents", lambda v: v.strip().lower() in ("1", "true", "yes")),
    "KUBECONFIG": ("kubeconfig", str),
}


@dataclass
class OperatorConfig:
    """Validated operator settings."""

    client_uuid: str
    watch_namespace: str = ""
    workers: int = 4
    resync_seconds: float = 300
    request_timeout_seconds: float = 30
    reconcile_timeout_seconds: float = 120
    grace_period_seconds: int = 30
    log_level: str = "INFO"
    record_events: bool = True
    kubeconfig: Optional[str] = None

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "OperatorConfig":
        return cls(
            client_uuid=cfg["clientUUID"],
            watch_namespace=cfg.get("watchNamespace", ""),
            workers=cfg["workers"],
            resync_seconds=cfg.get("resyncSeconds", DEFAULTS["resyncSeconds"]),
            request_timeout_seconds=cfg.get("requestTimeoutSeconds", DEFAULTS["requestTimeoutSeconds"]),
            reconcile_timeout_seconds=cfg.get("reconcileTimeoutSeconds", DEFAULTS["reconcileTimeoutSeconds"]),
            grace_period_seconds=cfg.get("gracePeriodSeconds", DEFAULTS["gracePeriodSeconds"]),
            log_level=cfg.get("logLevel", DEFAULTS["logLevel"]),
            record_events=cfg.get("recordEvents", DEFAULTS["recordEvents"]),
            kubeconfig=cfg.get("kubeconfig") or None,
        )


def load_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> OperatorConfig:
    """Load the operator configuration.

    Args:
        path: Optional YAML file with configuration keys at the top level.
        env: Environment to read overrides from, ``os.environ`` by default.
        overrides: Explicit values (e.g. from CLI flags), applied last.

    Returns:
        The validated configuration.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValidationError: If the YAML is malformed or a value is invalid.
    """
    env = os.environ if env is None else env

    file_cfg: Dict[str, Any] = {}
    if path:
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        try:
            file_cfg = yaml.safe_load(file_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid YAML in {path}", [str(e)])
        if not isinstance(file_cfg, dict):
            raise ValidationError(f"Config file {path} must contain a mapping")

    env_cfg = _read_env(env)
    cfg = merge_configs(DEFAULTS, file_cfg, env_cfg, {k: v for k, v in (overrides or {}).items() if v is not None})
    if not cfg.get("clientUUID"):
        cfg["clientUUID"] = str(uuid.uuid4())

    validate_config(cfg)
    return OperatorConfig.from_dict(cfg)


def _read_env(env: Mapping[str, str]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for var, (key, parse) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            result[key] = parse(raw)
        except ValueError:
            raise ValidationError(f"Invalid value for {var}: {raw!r}")
    return result


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge multiple configuration dictionaries.

    Later configs override earlier ones for conflicting keys.
    """
    result: Dict[str, Any] = {}
    for config in configs:
        result = _deep_merge(result, config)
    return result


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
