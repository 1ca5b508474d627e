"""Unit tests for the token, config and cluster models."""

import base64
from datetime import UTC, datetime, timedelta

import pytest

from teleport_operator.constants import TELEPORT_FINALIZER
from teleport_operator.errors import MalformedStateError
from teleport_operator.models.cluster import (
    ClusterIdentity,
    ClusterKey,
    ClusterRegistration,
    register_name,
)
from teleport_operator.models.config import (
    ControllerConfig,
    ImpactTier,
    detect_changes,
    max_tier,
)
from teleport_operator.models.token import (
    JoinToken,
    TokenRole,
    format_roles,
    parse_roles,
    role_set,
    token_ttl,
)

CONFIG_DATA = {
    "proxyAddr": "teleport.example.com:443",
    "managementClusterName": "golem",
    "appName": "teleport-kube-agent",
    "appVersion": "0.3.0",
    "appCatalog": "default",
}


class TestTokenRoles:
    def test_role_sets_ignore_order(self):
        assert role_set(["app", "kube"]) == role_set([TokenRole.KUBE, TokenRole.APP])
        assert role_set(["kube"]) != role_set(["kube", "app"])

    def test_format_roles_is_sorted(self):
        assert format_roles([TokenRole.NODE, TokenRole.KUBE]) == "kube,node"

    def test_parse_roles(self):
        assert parse_roles("kube, app,") == frozenset({"kube", "app"})

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            role_set(["db"])

    def test_ttl_follows_shortest_role(self):
        assert token_ttl([TokenRole.BOT]) == timedelta(hours=720)
        assert token_ttl([TokenRole.BOT, TokenRole.KUBE]) == timedelta(hours=24)

    def test_ttl_needs_roles(self):
        with pytest.raises(ValueError):
            token_ttl([])

    def test_issue_labels_owner_and_roles(self):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        token = JoinToken.issue("abc", "golem-foo", ["node", "kube"], now)

        assert token.owner == "golem-foo"
        assert token.roles == frozenset({"kube", "node"})
        assert token.labels["roles"] == "kube,node"
        assert token.expires == now + timedelta(hours=24)


class TestControllerConfig:
    def test_from_data(self):
        config = ControllerConfig.from_data(CONFIG_DATA)

        assert config.proxy_addr == "teleport.example.com:443"
        assert config.management_cluster_name == "golem"
        assert config.teleport_version == ""

    def test_missing_required_key(self):
        data = {k: v for k, v in CONFIG_DATA.items() if k != "appCatalog"}

        with pytest.raises(MalformedStateError, match="required key 'appCatalog' not found"):
            ControllerConfig.from_data(data)

    def test_values_are_stripped(self):
        config = ControllerConfig.from_data({**CONFIG_DATA, "teleportVersion": " 17.1.0\n"})
        assert config.teleport_version == "17.1.0"

    def test_binary_data_is_decoded_and_data_wins(self):
        binary = {
            "appCatalog": base64.b64encode(b"control-plane").decode(),
            "proxyAddr": base64.b64encode(b"ignored:443").decode(),
        }
        data = {k: v for k, v in CONFIG_DATA.items() if k != "appCatalog"}

        config = ControllerConfig.from_data(data, binary)

        assert config.app_catalog == "control-plane"
        assert config.proxy_addr == "teleport.example.com:443"


class TestChangeDetection:
    @pytest.fixture
    def config(self):
        return ControllerConfig.from_data(CONFIG_DATA)

    def test_first_observation_is_not_a_change(self, config):
        assert detect_changes(None, config) == []

    def test_identical_snapshots(self, config):
        assert detect_changes(config, config.model_copy()) == []

    @pytest.mark.parametrize(
        "field,value,tier",
        [
            ("proxy_addr", "other.example.com:443", ImpactTier.CRITICAL),
            ("management_cluster_name", "gorilla", ImpactTier.HIGH),
            ("teleport_version", "17.1.0", ImpactTier.MEDIUM),
            ("app_name", "teleport-agent", ImpactTier.MEDIUM),
            ("app_version", "0.4.0", ImpactTier.LOW),
            ("app_catalog", "control-plane", ImpactTier.LOW),
        ],
    )
    def test_field_tiers(self, config, field, value, tier):
        changes = detect_changes(config, config.model_copy(update={field: value}))

        assert len(changes) == 1
        assert changes[0].field == field
        assert changes[0].new_value == value
        assert changes[0].tier is tier

    def test_highest_tier_wins(self, config):
        new = config.model_copy(
            update={"app_version": "0.4.0", "management_cluster_name": "gorilla"}
        )
        assert max_tier(detect_changes(config, new)) is ImpactTier.HIGH

    def test_no_tier_without_changes(self):
        assert max_tier([]) is None


class TestClusterModels:
    @pytest.fixture
    def config(self):
        return ControllerConfig.from_data(CONFIG_DATA)

    def test_register_name(self):
        assert register_name("golem", "golem") == "golem"
        assert register_name("foo", "golem") == "golem-foo"

    def test_cluster_key_string(self):
        assert str(ClusterKey("org-acme", "foo")) == "org-acme/foo"

    def test_identity_from_object(self):
        cluster = ClusterIdentity.from_object(
            {
                "metadata": {
                    "name": "foo",
                    "namespace": "org-acme",
                    "resourceVersion": "42",
                    "deletionTimestamp": "2026-01-01T00:00:00Z",
                    "finalizers": [TELEPORT_FINALIZER],
                }
            }
        )

        assert cluster.key == ClusterKey("org-acme", "foo")
        assert cluster.resource_version == "42"
        assert cluster.deleting
        assert cluster.has_finalizer

    def test_workload_cluster_registration(self, config):
        registration = ClusterRegistration.for_cluster(
            ClusterIdentity(name="foo", namespace="org-acme"), config
        )

        assert registration.register_name == "golem-foo"
        assert registration.install_namespace == "org-acme"
        assert not registration.is_management_cluster
        assert registration.credential_record_name == "foo-teleport-join-token"
        assert registration.config_record_name == "foo-teleport-kube-agent-config"
        assert registration.user_values_name == "foo-teleport-kube-agent-user-values"

    def test_management_cluster_registration(self, config):
        registration = ClusterRegistration.for_cluster(
            ClusterIdentity(name="golem", namespace="org-giantswarm"), config
        )

        assert registration.register_name == "golem"
        assert registration.install_namespace == "giantswarm"
        assert registration.is_management_cluster

    def test_record_labels_point_back_to_cluster(self, config):
        registration = ClusterRegistration.for_cluster(
            ClusterIdentity(name="foo", namespace="org-acme"), config
        )
        labels = registration.record_labels()

        assert labels["teleport.giantswarm.io/cluster-name"] == "foo"
        assert labels["teleport.giantswarm.io/cluster-namespace"] == "org-acme"
        assert labels["app.kubernetes.io/managed-by"] == "teleport-operator"
