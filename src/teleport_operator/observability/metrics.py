"""
Prometheus metrics for the Teleport operator.

This module provides metrics for reconciliation throughput, join token
churn, access proxy health and configuration changes, and the aiohttp
server that exposes them together with the probe endpoints.
"""

import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

RECONCILIATION_TOTAL = Counter(
    "teleport_operator_reconciliation_total",
    "Total number of reconciliation attempts",
    ["resource_type", "namespace", "result"],
    registry=None,
)

RECONCILIATION_DURATION = Histogram(
    "teleport_operator_reconciliation_duration_seconds",
    "Time spent on reconciliation attempts",
    ["resource_type", "operation"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "teleport_operator_reconciliation_errors_total",
    "Total number of reconciliation errors",
    ["resource_type", "namespace", "error_type", "retryable"],
    registry=None,
)

RECONCILE_QUEUE_IN_FLIGHT = Gauge(
    "teleport_operator_reconcile_in_flight",
    "Number of clusters with a reconciliation attempt running or waiting for a worker",
    [],
    registry=None,
)

TOKENS_ISSUED_TOTAL = Counter(
    "teleport_operator_tokens_issued_total",
    "Join tokens created on the access proxy",
    ["roles"],
    registry=None,
)

TOKENS_REVOKED_TOTAL = Counter(
    "teleport_operator_tokens_revoked_total",
    "Join tokens deleted from the access proxy",
    [],
    registry=None,
)

PROXY_REQUESTS_TOTAL = Counter(
    "teleport_operator_proxy_requests_total",
    "Access proxy calls by operation and result",
    ["operation", "result"],
    registry=None,
)

PROXY_CIRCUIT_BREAKER_STATE = Gauge(
    "teleport_operator_proxy_circuit_breaker_state",
    "Access proxy circuit breaker state (0=closed, 1=open, 2=half-open)",
    ["proxy"],
    registry=None,
)

IDENTITY_REFRESH_TOTAL = Counter(
    "teleport_operator_identity_refresh_total",
    "Identity refreshes by outcome (reused, rebuilt, failed)",
    ["outcome"],
    registry=None,
)

IDENTITY_AGE_SECONDS = Gauge(
    "teleport_operator_identity_age_seconds",
    "Age of the identity behind the current proxy session at last refresh",
    [],
    registry=None,
)

CONFIG_CHANGES_TOTAL = Counter(
    "teleport_operator_config_changes_total",
    "Operator configuration changes by impact tier",
    ["tier"],
    registry=None,
)

FLEET_RECONCILE_TRIGGERS_TOTAL = Counter(
    "teleport_operator_fleet_reconcile_triggers_total",
    "Clusters marked for re-reconciliation after a configuration change",
    ["result"],
    registry=None,
)

TEARDOWN_STEPS_TOTAL = Counter(
    "teleport_operator_teardown_steps_total",
    "Teardown steps run by the finalizer by step and result",
    ["step", "result"],
    registry=None,
)

_ALL_METRICS = (
    RECONCILIATION_TOTAL,
    RECONCILIATION_DURATION,
    RECONCILIATION_ERRORS,
    RECONCILE_QUEUE_IN_FLIGHT,
    TOKENS_ISSUED_TOTAL,
    TOKENS_REVOKED_TOTAL,
    PROXY_REQUESTS_TOTAL,
    PROXY_CIRCUIT_BREAKER_STATE,
    IDENTITY_REFRESH_TOTAL,
    IDENTITY_AGE_SECONDS,
    CONFIG_CHANGES_TOTAL,
    FLEET_RECONCILE_TRIGGERS_TOTAL,
    TEARDOWN_STEPS_TOTAL,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()
        for metric in _ALL_METRICS:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the Teleport operator."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(
        self,
        resource_type: str,
        namespace: str,
        operation: str = "reconcile",
    ):
        """
        Context manager to track reconciliation attempts.

        Args:
            resource_type: Type of resource being reconciled
            namespace: Namespace of the resource
            operation: Type of operation being performed
        """
        start_time = time.time()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception as e:
            result = "error"
            retryable = "true" if getattr(e, "retryable", True) else "false"

            RECONCILIATION_ERRORS.labels(
                resource_type=resource_type,
                namespace=namespace,
                error_type=type(e).__name__,
                retryable=retryable,
            ).inc()

            raise
        finally:
            RECONCILIATION_TOTAL.labels(
                resource_type=resource_type,
                namespace=namespace,
                result=result,
            ).inc()

            RECONCILIATION_DURATION.labels(
                resource_type=resource_type, operation=operation
            ).observe(time.time() - start_time)

    def record_token_issued(self, roles: str) -> None:
        TOKENS_ISSUED_TOTAL.labels(roles=roles).inc()

    def record_tokens_revoked(self, count: int) -> None:
        if count:
            TOKENS_REVOKED_TOTAL.inc(count)

    def record_proxy_request(self, operation: str, success: bool) -> None:
        PROXY_REQUESTS_TOTAL.labels(
            operation=operation, result="success" if success else "failure"
        ).inc()

    def record_identity_refresh(self, outcome: str, age_seconds: float | None = None):
        """
        Record an identity refresh.

        Args:
            outcome: ``reused`` when the identity was unchanged, ``rebuilt`` when
                a new proxy client was built, ``failed`` otherwise
            age_seconds: Age of the identity now in use
        """
        IDENTITY_REFRESH_TOTAL.labels(outcome=outcome).inc()
        if age_seconds is not None:
            IDENTITY_AGE_SECONDS.set(age_seconds)

    def record_config_change(self, tier: str) -> None:
        CONFIG_CHANGES_TOTAL.labels(tier=tier).inc()

    def record_fleet_trigger(self, success: bool) -> None:
        FLEET_RECONCILE_TRIGGERS_TOTAL.labels(
            result="success" if success else "failure"
        ).inc()

    def record_teardown_step(self, step: str, success: bool) -> None:
        TEARDOWN_STEPS_TOTAL.labels(
            step=step, result="success" if success else "failure"
        ).inc()

    def set_in_flight(self, count: int) -> None:
        RECONCILE_QUEUE_IN_FLIGHT.set(count)


class MetricsServer:
    """
    HTTP server for exposing Prometheus metrics and probe endpoints.

    ``/ready`` answers 200 once ``ready_check`` returns True, which the
    operator wires to "a proxy session exists".
    """

    def __init__(
        self,
        port: int = 8081,
        host: str = "0.0.0.0",
        ready_check: Callable[[], bool] | None = None,
    ):
        self.port = port
        self.host = host
        self.ready_check = ready_check
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/ready", self._ready_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            metrics_data = generate_latest(get_metrics_registry())
            return Response(body=metrics_data, content_type=CONTENT_TYPE_LATEST)
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _ready_handler(self, request: Request) -> Response:
        """Handle /ready endpoint for readiness probes."""
        ready = self.ready_check() if self.ready_check else True
        return json_response(
            {"status": "ready" if ready else "not_ready", "timestamp": time.time()},
            status=200 if ready else 503,
        )

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics server started on {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


# Global metrics collector instance
metrics_collector = MetricsCollector()
