#!/usr/bin/env python3
"""
Teleport Operator - Main entry point for the Kopf-based Teleport operator.

The operator keeps every Cluster API cluster joined to Teleport:
- a join token per cluster on the access proxy, mirrored into a Secret
- a kube-agent values ConfigMap carrying the token and proxy address
- optional tbot configuration per cluster
- teardown of all of the above when the cluster is deleted

Usage:
    python -m teleport_operator.operator
    # Or with kopf directly:
    kopf run -m teleport_operator.operator --all-namespaces

Environment Variables:
    TELEPORT_OPERATOR_NAMESPACES: Comma-separated list of namespaces to watch
    OPERATOR_NAMESPACE: Namespace of the operator ConfigMap and identity Secret
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import functools
import logging
import random
import sys
from datetime import timedelta

import kopf
from kubernetes import config

from teleport_operator.constants import OPERATOR_CONFIG_NAME

# Import all handler modules to register them with kopf
from teleport_operator.handlers import artifacts, cluster  # noqa: F401
from teleport_operator.handlers import config as config_handler  # noqa: F401
from teleport_operator.models.config import ControllerConfig
from teleport_operator.observability.logging import setup_structured_logging
from teleport_operator.observability.metrics import MetricsServer
from teleport_operator.observability.tracing import setup_tracing, shutdown_tracing
from teleport_operator.proxy.identity import (
    IdentityLoader,
    ProxySessionHandle,
    http_client_factory,
)
from teleport_operator.services.artifact_sync import ArtifactSynchronizer
from teleport_operator.services.bot_config import BotConfigSynchronizer
from teleport_operator.services.cluster_reconciler import ClusterReconciler
from teleport_operator.services.config_change import (
    ConfigChangeDetector,
    ConfigHolder,
)
from teleport_operator.services.dispatcher import ReconcileDispatcher
from teleport_operator.services.finalizer import FinalizerOrchestrator
from teleport_operator.services.token_manager import TokenLifecycleManager
from teleport_operator.settings import settings as operator_settings
from teleport_operator.utils.kubernetes import (
    AppClient,
    ClusterClient,
    get_kubernetes_client,
)
from teleport_operator.utils.records import RecordManager


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


def get_watched_namespaces() -> list[str] | None:
    return operator_settings.watched_namespaces


def load_kubernetes_config() -> None:
    try:
        config.load_incluster_config()
        logging.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logging.info("Loaded kubeconfig configuration")
        except config.ConfigException:
            logging.error("Failed to load Kubernetes configuration")
            raise


async def load_controller_config(records: RecordManager) -> ControllerConfig:
    """
    Read the operator ConfigMap once for startup.

    Raises:
        kopf.PermanentError: If the ConfigMap is missing or malformed
    """
    namespace = operator_settings.operator_namespace
    config_map = await records.get_config_map(OPERATOR_CONFIG_NAME, namespace)
    if config_map is None:
        raise kopf.PermanentError(
            f"Operator config map {namespace}/{OPERATOR_CONFIG_NAME} not found"
        )
    return ControllerConfig.from_config_map(config_map)


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    Configures kopf, loads the controller configuration, opens the first
    access proxy session and wires the reconciliation components into
    ``memo`` for the handlers.
    """
    logging.info("Starting Teleport Operator...")
    settings.watching.reconnect_backoff = 1.0
    settings.execution.max_workers = operator_settings.max_concurrent_reconciles

    if operator_settings.leader_elect:
        settings.peering.name = operator_settings.operator_name
        settings.peering.priority = random.randint(0, 32767)
        logging.info(
            f"Peering priority set to {settings.peering.priority} for leader election"
        )
    else:
        settings.peering.standalone = True

    watched_namespaces = get_watched_namespaces()
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")

    setup_tracing(
        enabled=operator_settings.tracing_enabled,
        endpoint=operator_settings.tracing_endpoint,
        sample_rate=operator_settings.tracing_sample_rate,
    )

    load_kubernetes_config()
    k8s_client = get_kubernetes_client()
    records = RecordManager(k8s_client)
    clusters = ClusterClient(k8s_client)

    controller_config = await load_controller_config(records)
    holder = ConfigHolder(controller_config)
    logging.info(
        f"Loaded operator config: proxy={controller_config.proxy_addr}, "
        f"management cluster={controller_config.management_cluster_name}"
    )

    sessions = ProxySessionHandle(
        loader=IdentityLoader(records, operator_settings.operator_namespace),
        factory=http_client_factory(
            timeout=operator_settings.proxy_call_timeout_seconds,
            fail_max=operator_settings.proxy_circuit_fail_max,
            reset_seconds=operator_settings.proxy_circuit_reset_seconds,
        ),
        config_source=holder,
        max_age=timedelta(seconds=operator_settings.identity_refresh_interval_seconds),
    )
    try:
        await sessions.refresh()
    except Exception as e:
        # Reconciliations retry the refresh; readiness stays false until then
        logging.warning(f"Initial access proxy session failed: {e}")

    token_factory = functools.partial(
        TokenLifecycleManager, timeout=operator_settings.proxy_call_timeout_seconds
    )
    artifacts_sync = ArtifactSynchronizer(records)
    bot_config = None
    if operator_settings.enable_tbot:
        bot_config = BotConfigSynchronizer(records, AppClient(k8s_client))
        logging.info("tbot configuration management enabled")

    reconciler = ClusterReconciler(
        clusters=clusters,
        artifacts=artifacts_sync,
        finalizer=FinalizerOrchestrator(
            clusters,
            artifacts_sync,
            bot_config=bot_config,
            timeout=operator_settings.proxy_call_timeout_seconds,
        ),
        sessions=sessions,
        config_source=holder,
        token_factory=token_factory,
        requeue_after=operator_settings.reconcile_interval_seconds,
        bot_config=bot_config,
    )

    memo.sessions = sessions
    memo.dispatcher = ReconcileDispatcher(
        reconciler.reconcile,
        max_workers=operator_settings.max_concurrent_reconciles,
        requeue_after=operator_settings.reconcile_interval_seconds,
        initial_delay=operator_settings.retry_initial_delay_seconds,
        backoff_factor=operator_settings.retry_backoff_factor,
        max_delay=operator_settings.retry_max_delay_seconds,
    )
    memo.config_detector = ConfigChangeDetector(
        holder,
        sessions,
        clusters,
        token_factory,
        namespaces=watched_namespaces,
        applied=controller_config,
    )

    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port,
            host=operator_settings.metrics_host,
            ready_check=lambda: sessions.current is not None,
        )
        await metrics_server.start()
        memo.metrics_server = metrics_server
    except Exception as e:
        logging.error(f"Failed to start metrics server: {e}")
        logging.warning("Continuing without metrics server")


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop reconciliations, close proxy clients and the metrics server."""
    logging.info("Shutting down Teleport Operator...")

    dispatcher = getattr(memo, "dispatcher", None)
    if dispatcher is not None:
        await dispatcher.stop()

    sessions = getattr(memo, "sessions", None)
    if sessions is not None:
        try:
            await sessions.aclose()
        except Exception as e:
            logging.error(f"Error closing access proxy session: {e}")

    metrics_server = getattr(memo, "metrics_server", None)
    if metrics_server is not None:
        await metrics_server.stop()

    shutdown_tracing()


@kopf.on.probe(id="proxy_session")
async def proxy_session_probe(memo: kopf.Memo, **_) -> dict[str, str]:
    sessions = getattr(memo, "sessions", None)
    session = sessions.current if sessions is not None else None
    if session is None:
        return {"status": "not_ready", "operator": "teleport-operator"}
    return {
        "status": "ready",
        "operator": "teleport-operator",
        "proxy": session.proxy_addr,
        "identity_read": session.identity.last_read.isoformat(),
    }


def main() -> None:
    """
    Main entry point for the operator.

    Configures logging, determines the namespace scope and runs kopf.
    """
    configure_logging()
    watched_namespaces = get_watched_namespaces()

    try:
        if watched_namespaces:
            kopf.run(
                namespaces=watched_namespaces,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
        else:
            kopf.run(
                clusterwide=True,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
