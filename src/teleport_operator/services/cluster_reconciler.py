"""
Per-cluster reconciliation.

One attempt reads the cluster and either tears it down (deletion marker
set) or converges its finalizer, records and auxiliary records. Attempts
are driven by :class:`~.dispatcher.ReconcileDispatcher`.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from ..models.cluster import ClusterKey, ClusterRegistration
from ..models.config import ControllerConfig
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..observability.tracing import get_tracer
from ..proxy.client import AccessProxyClient
from ..proxy.identity import ProxySessionHandle
from ..utils.kubernetes import ClusterClient
from .artifact_sync import ArtifactSynchronizer
from .bot_config import BotConfigSynchronizer
from .finalizer import FinalizerOrchestrator
from .token_manager import TokenLifecycleManager

tracer = get_tracer(__name__)

RESOURCE_TYPE = "cluster"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a successful attempt; None means do not requeue."""

    requeue_after: float | None = None


class ClusterReconciler:
    def __init__(
        self,
        clusters: ClusterClient,
        artifacts: ArtifactSynchronizer,
        finalizer: FinalizerOrchestrator,
        sessions: ProxySessionHandle,
        config_source: Callable[[], ControllerConfig],
        token_factory: Callable[[AccessProxyClient], TokenLifecycleManager],
        requeue_after: float = 60.0,
        bot_config: BotConfigSynchronizer | None = None,
    ):
        self.clusters = clusters
        self.artifacts = artifacts
        self.finalizer = finalizer
        self.sessions = sessions
        self.config_source = config_source
        self.token_factory = token_factory
        self.requeue_after = requeue_after
        self.bot_config = bot_config
        self.logger = OperatorLogger(self.__class__.__name__)

    async def reconcile(self, key: ClusterKey) -> ReconcileResult:
        """
        Run one attempt for ``key`` with logging, metrics and a trace span.

        Raises:
            Exception: Whatever aborted the attempt; nothing is rolled back
        """
        start_time = time.time()
        self.logger.log_reconciliation_start(RESOURCE_TYPE, key.name, key.namespace)

        async with metrics_collector.track_reconciliation(RESOURCE_TYPE, key.namespace):
            with tracer.start_as_current_span(
                "reconcile_cluster",
                attributes={"k8s.namespace": key.namespace, "k8s.resource.name": key.name},
            ):
                try:
                    result = await self._reconcile(key)
                except Exception as e:
                    self.logger.log_reconciliation_error(
                        RESOURCE_TYPE, key.name, key.namespace, e, time.time() - start_time
                    )
                    raise

        self.logger.log_reconciliation_success(
            RESOURCE_TYPE, key.name, key.namespace, time.time() - start_time
        )
        return result

    async def _reconcile(self, key: ClusterKey) -> ReconcileResult:
        cluster = await self.clusters.get_cluster(key)
        if cluster is None:
            self.logger.debug(f"Cluster {key} not found, nothing to do")
            return ReconcileResult()

        config = self.config_source()
        registration = ClusterRegistration.for_cluster(cluster, config)

        if cluster.deleting:
            if cluster.has_finalizer:
                session = await self.sessions.get()
                await self.finalizer.run(
                    cluster, registration, self.token_factory(session.client), session.client
                )
            return ReconcileResult()

        # The finalizer goes on before anything is created on the proxy
        await self.clusters.add_finalizer(cluster)

        session = await self.sessions.get()
        tokens = self.token_factory(session.client)

        await self.artifacts.ensure_credential_record(registration, tokens)
        roles = await self.artifacts.agent_roles(registration)
        await self.artifacts.ensure_config_record(registration, config, roles, tokens)
        if self.bot_config is not None:
            await self.bot_config.ensure(registration)

        return ReconcileResult(requeue_after=self.requeue_after)
