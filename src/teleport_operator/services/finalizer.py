"""
Ordered teardown of a cluster's enrollment state.

The steps run in a fixed order on every attempt. Each one is idempotent,
so a retry after a partial failure re-runs the completed steps as no-ops.
The finalizer is removed only after every earlier step succeeded in the
same attempt.
"""

from enum import Enum

from ..errors import TeardownError
from ..models.cluster import ClusterIdentity, ClusterRegistration
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..observability.tracing import get_tracer
from ..proxy.client import AccessProxyClient
from ..utils.kubernetes import ClusterClient
from .artifact_sync import ArtifactSynchronizer
from .bot_config import BotConfigSynchronizer
from .token_manager import TokenLifecycleManager, proxy_call

tracer = get_tracer(__name__)


class TeardownStep(str, Enum):
    REVOKE_TOKENS = "revoke_tokens"
    DELETE_RECORDS = "delete_records"
    DELETE_AUXILIARY = "delete_auxiliary"
    DEREGISTER = "deregister"
    REMOVE_FINALIZER = "remove_finalizer"


def teardown_steps(bot_enabled: bool) -> list[TeardownStep]:
    steps = [TeardownStep.REVOKE_TOKENS, TeardownStep.DELETE_RECORDS]
    if bot_enabled:
        steps.append(TeardownStep.DELETE_AUXILIARY)
    steps += [TeardownStep.DEREGISTER, TeardownStep.REMOVE_FINALIZER]
    return steps


class FinalizerOrchestrator:
    """
    Runs the teardown steps for a cluster marked for deletion.

    Args:
        clusters: Cluster access for removing the finalizer
        artifacts: Deletes the per-cluster records
        bot_config: tbot synchronizer; None when the feature is disabled
        timeout: Seconds each access proxy call may take
    """

    def __init__(
        self,
        clusters: ClusterClient,
        artifacts: ArtifactSynchronizer,
        bot_config: BotConfigSynchronizer | None = None,
        timeout: float = 30.0,
    ):
        self.clusters = clusters
        self.artifacts = artifacts
        self.bot_config = bot_config
        self.timeout = timeout
        self.logger = OperatorLogger(self.__class__.__name__)

    async def run(
        self,
        cluster: ClusterIdentity,
        registration: ClusterRegistration,
        tokens: TokenLifecycleManager,
        proxy: AccessProxyClient,
    ) -> None:
        """
        Tear down everything the operator created for ``cluster``.

        Raises:
            TeardownError: Naming the first step that failed; the finalizer
                is left in place
        """
        owner = registration.register_name
        for step in teardown_steps(self.bot_config is not None):
            with tracer.start_as_current_span(
                f"teardown_{step.value}", attributes={"teleport.register_name": owner}
            ):
                try:
                    await self._run_step(step, cluster, registration, tokens, proxy)
                except Exception as e:
                    metrics_collector.record_teardown_step(step.value, success=False)
                    raise TeardownError(step.value, owner, e) from e
            metrics_collector.record_teardown_step(step.value, success=True)
            self.logger.debug(
                f"Teardown step {step.value} done for {owner}",
                teardown_step=step.value,
                register_name=owner,
            )
        self.logger.info(f"Teardown completed for cluster {cluster.key}")

    async def _run_step(
        self,
        step: TeardownStep,
        cluster: ClusterIdentity,
        registration: ClusterRegistration,
        tokens: TokenLifecycleManager,
        proxy: AccessProxyClient,
    ) -> None:
        if step is TeardownStep.REVOKE_TOKENS:
            await tokens.revoke_all(registration.register_name)
        elif step is TeardownStep.DELETE_RECORDS:
            await self.artifacts.delete_credential_record(registration)
            await self.artifacts.delete_config_record(registration)
        elif step is TeardownStep.DELETE_AUXILIARY:
            await self.bot_config.remove(registration)
        elif step is TeardownStep.DEREGISTER:
            await self.deregister(registration, proxy)
        elif step is TeardownStep.REMOVE_FINALIZER:
            await self.clusters.remove_finalizer(cluster)

    async def deregister(
        self, registration: ClusterRegistration, proxy: AccessProxyClient
    ) -> int:
        """Delete every kube server registered under the cluster's register name."""
        owner = registration.register_name
        servers = await proxy_call(
            "list kubernetes servers", owner, proxy.get_kubernetes_servers(), self.timeout
        )
        matching = [server for server in servers if server.name == owner]
        for server in matching:
            await proxy_call(
                "delete kubernetes server",
                owner,
                proxy.delete_kubernetes_server(server.host_id, server.name),
                self.timeout,
            )
        if matching:
            self.logger.info(f"Deregistered {len(matching)} kubernetes server(s) of {owner}")
        return len(matching)
