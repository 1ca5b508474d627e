"""Unit tests for operator config change classification and fleet reaction."""

import pytest

from teleport_operator.constants import CONFIG_UPDATE_ANNOTATION
from teleport_operator.errors import AccessProxyError
from teleport_operator.models.config import ImpactTier
from teleport_operator.services.config_change import ConfigChangeDetector, ConfigHolder

NAMESPACE = "org-acme"
STAMP = "2026-01-01T00:00:00Z"


def annotation(custom_api, name: str) -> str | None:
    body = custom_api.get_cluster(name, NAMESPACE)
    return body["metadata"].get("annotations", {}).get(CONFIG_UPDATE_ANNOTATION)


@pytest.fixture
def fleet(custom_api):
    for name in ("foo", "bar"):
        custom_api.add_cluster(name, NAMESPACE)
    return custom_api


@pytest.fixture
def holder(controller_config):
    return ConfigHolder(controller_config)


@pytest.fixture
def detector(holder, sessions, clusters, token_factory, controller_config, fleet):
    return ConfigChangeDetector(
        holder,
        sessions,
        clusters,
        token_factory,
        applied=controller_config,
        timestamp=lambda: STAMP,
    )


class TestConfigChangeDetector:
    @pytest.mark.asyncio
    async def test_first_observation(
        self, holder, sessions, clusters, token_factory, controller_config, fleet
    ):
        detector = ConfigChangeDetector(holder, sessions, clusters, token_factory)

        assert await detector.observe(controller_config) == []
        assert detector.applied == controller_config
        assert annotation(fleet, "foo") is None
        sessions.invalidate.assert_not_called()

    @pytest.mark.asyncio
    async def test_unchanged_config(self, detector, controller_config, fleet, sessions):
        assert await detector.observe(controller_config.model_copy()) == []
        assert fleet.patches == []
        sessions.invalidate.assert_not_called()

    @pytest.mark.asyncio
    async def test_low_impact_does_nothing(self, detector, holder, controller_config, fleet, sessions):
        new = controller_config.model_copy(update={"app_version": "0.4.0"})

        changes = await detector.observe(new)

        assert [c.tier for c in changes] == [ImpactTier.LOW]
        assert fleet.patches == []
        sessions.invalidate.assert_not_called()
        assert holder.current == new
        assert detector.applied == new

    @pytest.mark.asyncio
    async def test_medium_impact_marks_fleet(self, detector, controller_config, fleet, sessions):
        new = controller_config.model_copy(update={"teleport_version": "17.1.0"})

        await detector.observe(new)

        assert annotation(fleet, "foo") == STAMP
        assert annotation(fleet, "bar") == STAMP
        sessions.invalidate.assert_not_called()

    @pytest.mark.asyncio
    async def test_critical_impact_invalidates_session(
        self, detector, holder, controller_config, fleet, sessions
    ):
        new = controller_config.model_copy(update={"proxy_addr": "other.example.com:443"})

        await detector.observe(new)

        sessions.invalidate.assert_called_once()
        assert holder().proxy_addr == "other.example.com:443"
        assert annotation(fleet, "foo") == STAMP

    @pytest.mark.asyncio
    async def test_high_impact_revokes_old_registrations(
        self, detector, controller_config, fleet, proxy, tokens
    ):
        await tokens.generate_token("golem-foo", ["kube"])
        await tokens.generate_token("golem-bar", ["kube", "node"])
        unrelated = await tokens.generate_token("other-baz", ["kube"])
        new = controller_config.model_copy(update={"management_cluster_name": "gorilla"})

        await detector.observe(new)

        assert proxy.tokens_of("golem-foo") == []
        assert proxy.tokens_of("golem-bar") == []
        assert unrelated in proxy.tokens
        assert annotation(fleet, "foo") == STAMP

    @pytest.mark.asyncio
    async def test_revocation_failure_is_isolated(self, detector, controller_config, proxy, tokens):
        await tokens.generate_token("golem-foo", ["kube"])
        proxy.failures["delete_token"] = AccessProxyError("unavailable")

        assert await detector.revoke_previous_registrations(controller_config) == 0

    @pytest.mark.asyncio
    async def test_annotation_failure_is_isolated(self, detector, fleet):
        fleet.fail_patch.add("foo")

        assert await detector.trigger_fleet_reconciliation("test") == 1
        assert annotation(fleet, "bar") == STAMP

    @pytest.mark.asyncio
    async def test_failed_reaction_is_repeated(
        self, detector, holder, controller_config, sessions, fleet
    ):
        sessions.get.side_effect = AccessProxyError("unavailable")
        new = controller_config.model_copy(update={"management_cluster_name": "gorilla"})

        with pytest.raises(AccessProxyError):
            await detector.observe(new)

        assert holder.current == new
        assert detector.applied == controller_config
        assert annotation(fleet, "foo") is None

        sessions.get.side_effect = None
        changes = await detector.observe(new)

        assert [c.field for c in changes] == ["management_cluster_name"]
        assert detector.applied == new
        assert annotation(fleet, "foo") == STAMP

    @pytest.mark.asyncio
    async def test_namespace_scope(
        self, holder, sessions, clusters, token_factory, controller_config, fleet
    ):
        fleet.add_cluster("elsewhere", "org-other")
        detector = ConfigChangeDetector(
            holder,
            sessions,
            clusters,
            token_factory,
            namespaces=[NAMESPACE],
            timestamp=lambda: STAMP,
        )

        assert await detector.trigger_fleet_reconciliation("test") == 2
        body = fleet.get_cluster("elsewhere", "org-other")
        assert CONFIG_UPDATE_ANNOTATION not in body["metadata"].get("annotations", {})
