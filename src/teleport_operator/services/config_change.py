"""
Classification of operator configuration changes and fleet-wide reaction.

Each observed snapshot of the ``teleport-operator`` ConfigMap is diffed
against the last applied one. The highest impact tier among the changed
fields decides the single action taken:

- CRITICAL (proxy address): drop the shared proxy session, then re-reconcile
  the fleet
- HIGH (management cluster name): revoke the tokens of every cluster's old
  register name, then re-reconcile the fleet
- MEDIUM (agent version or app name): re-reconcile the fleet
- LOW (app version or catalog): nothing

Re-reconciling the fleet means stamping an annotation on every cluster;
the detector itself never writes per-cluster records.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from ..constants import CONFIG_UPDATE_ANNOTATION
from ..models.cluster import register_name
from ..models.config import (
    ChangeRecord,
    ControllerConfig,
    ImpactTier,
    detect_changes,
    max_tier,
)
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..proxy.client import AccessProxyClient
from ..proxy.identity import ProxySessionHandle
from ..utils.kubernetes import ClusterClient
from .token_manager import TokenLifecycleManager


class ConfigHolder:
    """The controller configuration every component reads from."""

    def __init__(self, config: ControllerConfig):
        self._config = config

    @property
    def current(self) -> ControllerConfig:
        return self._config

    def update(self, config: ControllerConfig) -> None:
        self._config = config

    def __call__(self) -> ControllerConfig:
        return self._config


def rfc3339_now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class ConfigChangeDetector:
    """
    Detects and acts on operator configuration changes.

    Args:
        holder: Shared configuration, updated with every observed snapshot
        sessions: Proxy session handle, invalidated on a critical change
        clusters: Cluster access for listing and annotating the fleet
        token_factory: Builds a token manager for a proxy client
        namespaces: Namespaces to look for clusters in, None for all
        applied: Snapshot already in effect, usually the one loaded at startup
        timestamp: Produces the annotation value
    """

    def __init__(
        self,
        holder: ConfigHolder,
        sessions: ProxySessionHandle,
        clusters: ClusterClient,
        token_factory: Callable[[AccessProxyClient], TokenLifecycleManager],
        namespaces: list[str] | None = None,
        applied: ControllerConfig | None = None,
        timestamp: Callable[[], str] = rfc3339_now,
    ):
        self.holder = holder
        self.sessions = sessions
        self.clusters = clusters
        self.token_factory = token_factory
        self.namespaces = namespaces
        self.timestamp = timestamp
        self.logger = OperatorLogger(self.__class__.__name__)

        self._applied = applied
        self._lock = asyncio.Lock()

    @property
    def applied(self) -> ControllerConfig | None:
        return self._applied

    async def observe(self, new: ControllerConfig) -> list[ChangeRecord]:
        """
        Adopt ``new`` and react to what changed since the last applied snapshot.

        The snapshot only counts as applied once the reaction succeeded, so
        a failed reaction is repeated on the next observation.

        Returns:
            The detected changes, empty for the first observation
        """
        async with self._lock:
            changes = detect_changes(self._applied, new)
            old = self._applied
            self.holder.update(new)

            if not changes:
                self._applied = new
                return []

            for change in changes:
                metrics_collector.record_config_change(change.tier.name.lower())
                self.logger.info(
                    f"Operator config field {change.field} changed "
                    f"({change.tier.name}): {change.old_value!r} -> {change.new_value!r}",
                    config_field=change.field,
                    impact_tier=change.tier.name,
                )

            await self._react(max_tier(changes), old, new)
            self._applied = new
            return changes

    async def _react(
        self, tier: ImpactTier, old: ControllerConfig, new: ControllerConfig
    ) -> None:
        if tier is ImpactTier.CRITICAL:
            self.sessions.invalidate()
        elif tier is ImpactTier.HIGH:
            await self.revoke_previous_registrations(old)

        if tier >= ImpactTier.MEDIUM:
            await self.trigger_fleet_reconciliation(f"{tier.name.lower()} config change")

    async def revoke_previous_registrations(self, old: ControllerConfig) -> int:
        """
        Revoke the tokens of every cluster under its previous register name.

        Per-cluster failures are logged and do not stop the others.
        """
        session = await self.sessions.get()
        tokens = self.token_factory(session.client)
        revoked = 0
        for cluster in await self.clusters.list_clusters(self.namespaces):
            owner = register_name(cluster.name, old.management_cluster_name)
            try:
                revoked += await tokens.revoke_all(owner)
            except Exception as e:
                self.logger.warning(f"Failed to revoke tokens of {owner}: {e}")
        return revoked

    async def trigger_fleet_reconciliation(self, reason: str) -> int:
        """
        Annotate every known cluster so each one is reconciled again.

        Returns:
            Number of clusters marked
        """
        stamp = self.timestamp()
        clusters = await self.clusters.list_clusters(self.namespaces)
        marked = 0
        for cluster in clusters:
            try:
                await self.clusters.annotate(cluster, CONFIG_UPDATE_ANNOTATION, stamp)
            except Exception as e:
                metrics_collector.record_fleet_trigger(success=False)
                self.logger.warning(
                    f"Failed to mark cluster {cluster.key} for reconciliation: {e}"
                )
                continue
            metrics_collector.record_fleet_trigger(success=True)
            marked += 1
        self.logger.info(
            f"Marked {marked}/{len(clusters)} clusters for reconciliation ({reason})"
        )
        return marked
