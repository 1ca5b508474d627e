"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all process-level operator
configuration loaded from environment variables. The fleet-facing controller
configuration (proxy address, management cluster name, agent coordinates)
is not part of these settings; it is read from the ``teleport-operator``
ConfigMap, see :mod:`teleport_operator.models.config`.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Operator identification
    operator_namespace: str = Field(
        default="giantswarm",
        description="Namespace holding the operator ConfigMap and identity Secret",
        validation_alias="OPERATOR_NAMESPACE",
    )
    operator_name: str = Field(
        default="teleport-operator",
        description="Name of the operator deployment",
        validation_alias="OPERATOR_NAME",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for reconciliation tracing",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="TELEPORT_OPERATOR_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Leader election
    leader_elect: bool = Field(
        default=False,
        validation_alias="LEADER_ELECT",
        description="Coordinate with other operator replicas through kopf peering",
    )

    # Optional features
    enable_tbot: bool = Field(
        default=False,
        validation_alias="ENABLE_TBOT",
        description="Maintain tbot ConfigMaps and App extra configs per cluster",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )
    tracing_enabled: bool = Field(
        default=False,
        validation_alias="TRACING_ENABLED",
        description="Export OpenTelemetry traces",
    )
    tracing_endpoint: str = Field(
        default="http://localhost:4317",
        validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="OTLP collector endpoint for traces",
    )
    tracing_sample_rate: float = Field(
        default=1.0,
        validation_alias="TRACING_SAMPLE_RATE",
        description="Fraction of traces to sample (0.0 - 1.0)",
    )

    # Reconciliation behavior
    reconcile_interval_seconds: float = Field(
        default=60.0,
        validation_alias="RECONCILE_INTERVAL_SECONDS",
        description="Requeue interval after a successful reconciliation",
    )
    max_concurrent_reconciles: int = Field(
        default=20,
        validation_alias="MAX_CONCURRENT_RECONCILES",
        description="Size of the reconciliation worker pool",
    )
    retry_initial_delay_seconds: float = Field(
        default=1.0,
        validation_alias="RETRY_INITIAL_DELAY_SECONDS",
        description="First backoff delay after a transient failure",
    )
    retry_backoff_factor: float = Field(
        default=2.0,
        validation_alias="RETRY_BACKOFF_FACTOR",
        description="Multiplier applied to the backoff delay per consecutive failure",
    )
    retry_max_delay_seconds: float = Field(
        default=300.0,
        validation_alias="RETRY_MAX_DELAY_SECONDS",
        description="Upper bound for the backoff delay",
    )

    # Access proxy
    identity_refresh_interval_seconds: float = Field(
        default=300.0,
        validation_alias="IDENTITY_REFRESH_INTERVAL_SECONDS",
        description="Maximum age of the identity before it is re-read",
    )
    proxy_call_timeout_seconds: float = Field(
        default=30.0,
        validation_alias="PROXY_CALL_TIMEOUT_SECONDS",
        description="Timeout applied to every access proxy call",
    )
    proxy_circuit_fail_max: int = Field(
        default=5,
        validation_alias="PROXY_CIRCUIT_FAIL_MAX",
        description="Consecutive proxy failures before the circuit opens",
    )
    proxy_circuit_reset_seconds: int = Field(
        default=60,
        validation_alias="PROXY_CIRCUIT_RESET_SECONDS",
        description="Seconds an open circuit waits before a trial call",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None


# Global settings instance - initialized once at module import
settings = Settings()
