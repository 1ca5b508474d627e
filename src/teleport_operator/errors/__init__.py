"""
Error handling module for the Teleport operator.

This module provides an error hierarchy that integrates with kopf and the
reconcile dispatcher and provides clear categorization for different types
of failures.
"""

from .operator_errors import (
    AccessProxyError,
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    KubernetesAPIError,
    MalformedStateError,
    OperatorError,
    ReconciliationError,
    TeardownError,
    TokenNotFoundError,
)

__all__ = [
    "OperatorError",
    "ExternalServiceError",
    "AccessProxyError",
    "TokenNotFoundError",
    "KubernetesAPIError",
    "ConfigurationError",
    "MalformedStateError",
    "ConflictError",
    "ReconciliationError",
    "TeardownError",
]
