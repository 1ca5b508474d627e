"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the Teleport operator,
providing clear categorization and integration with kopf's retry mechanisms
and with the reconcile dispatcher's backoff.
"""

import kopf


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (malformed, conflict, external, teardown)
            retryable: Whether the attempt should be retried with backoff
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ExternalServiceError(OperatorError):
    """Error communicating with external services."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            delay=delay,
            user_action=action,
            cause=cause,
        )


class AccessProxyError(ExternalServiceError):
    """Error communicating with the Teleport access proxy."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = True,
        cause: Exception | None = None,
    ):
        if status_code:
            message = f"HTTP {status_code}: {message}"

        # Auth and request errors will not heal by retrying the same identity
        if status_code in (400, 401, 403):
            retryable = False

        super().__init__(
            service="Teleport access proxy",
            message=message,
            retryable=retryable,
            user_action="Check proxy reachability and the operator identity",
            cause=cause,
        )
        self.status_code = status_code


class TokenNotFoundError(AccessProxyError):
    """A join token lookup on the access proxy found nothing."""

    def __init__(self, name: str):
        super().__init__(message=f"token {name!r} not found", retryable=False)
        self.name = name


class KubernetesAPIError(ExternalServiceError):
    """Error communicating with Kubernetes API."""

    def __init__(self, message: str, reason: str | None = None, retryable: bool = True):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )
        self.reason = reason


class ConfigurationError(OperatorError):
    """Error in operator configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct configuration",
        )


class MalformedStateError(ConfigurationError):
    """
    External state the operator reads cannot be parsed.

    Not retried with backoff: the attempt is requeued on the normal
    reconcile interval so an operator fix of the object is picked up.
    """

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            retryable=False,
            user_action=user_action or "Fix the referenced object by hand",
        )
        self.category = "malformed"


class ConflictError(OperatorError):
    """Optimistic concurrency conflict on a write; retried after a fresh read."""

    def __init__(self, message: str, delay: int = 1):
        super().__init__(
            message=message,
            category="conflict",
            retryable=True,
            delay=delay,
        )


class ReconciliationError(OperatorError):
    """Error raised when reconciliation cannot be completed."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="reconciliation",
            retryable=retryable,
            delay=delay,
            user_action=user_action
            or "Inspect operator logs and the cluster resource for issues",
            cause=cause,
        )


class TeardownError(ReconciliationError):
    """A teardown step failed; the finalizer stays in place."""

    def __init__(self, step: str, owner: str, cause: Exception):
        super().__init__(
            message=f"teardown step {step} failed for {owner}: {cause}",
            retryable=getattr(cause, "retryable", True),
            cause=cause,
        )
        self.step = step
        self.owner = owner
