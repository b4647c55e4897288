"""Schema validation for the operator configuration."""

from typing import Any, Dict, List

import jsonschema

# JSON Schema for the operator configuration
CONFIG_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "required": ["clientUUID", "workers"],
    "properties": {
        "watchNamespace": {"type": "string"},
        "clientUUID": {"type": "string", "minLength": 1},
        "workers": {"type": "integer", "minimum": 1, "maximum": 64},
        "resyncSeconds": {"type": "number", "minimum": 0},
        "requestTimeoutSeconds": {"type": "number", "exclusiveMinimum": 0},
        "reconcileTimeoutSeconds": {"type": "number", "exclusiveMinimum": 0},
        "gracePeriodSeconds": {"type": "integer", "minimum": 0},
        "logLevel": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        },
        "recordEvents": {"type": "boolean"},
        "kubeconfig": {"type": "string"}
    }
}


class ValidationError(Exception):
    """Exception raised when the operator configuration is invalid."""

    def __init__(self, message: str, errors: List[str] = None):
        super().__init__(message)
        self.errors = errors or []


def validate_config(cfg: Dict[str, Any]) -> bool:
    """Validate an operator configuration against the schema.

    Args:
        cfg: The merged configuration dictionary.

    Returns:
        True if validation passes.

    Raises:
        ValidationError: If validation fails.
    """
    try:
        jsonschema.validate(instance=cfg, schema=CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        raise ValidationError(f"Schema validation failed: {e.message}", [str(e)])

    errors = _semantic_validation(cfg)
    if errors:
        raise ValidationError("Semantic validation failed", errors)

    return True


def _semantic_validation(cfg: Dict[str, Any]) -> List[str]:
    """Checks that span more than one key."""
    errors = []

    request_timeout = cfg.get("requestTimeoutSeconds")
    reconcile_timeout = cfg.get("reconcileTimeoutSeconds")
    if request_timeout and reconcile_timeout and request_timeout > reconcile_timeout:
        errors.append(
            f"requestTimeoutSeconds ({request_timeout}) exceeds "
            f"reconcileTimeoutSeconds ({reconcile_timeout})"
        )

    return errors
