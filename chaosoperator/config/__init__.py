"""Configuration loading and validation for the chaos operator."""

from chaosoperator.config.loader import OperatorConfig, load_config
from chaosoperator.config.validator import ValidationError, validate_config

__all__ = ["OperatorConfig", "load_config", "ValidationError", "validate_config"]
