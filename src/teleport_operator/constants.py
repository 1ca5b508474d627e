"""
Constants used throughout the Teleport operator.

This module defines all constant values used by the operator including:
- Finalizer names for cleanup coordination
- Resource labels and annotations
- Record naming patterns and payload keys
- Token role classes and their lifetimes
"""

# Finalizer placed on Cluster API clusters while enrollment state exists
TELEPORT_FINALIZER = "teleport.finalizer.giantswarm.io"

# Cluster API resource coordinates
CLUSTER_API_GROUP = "cluster.x-k8s.io"
CLUSTER_API_VERSION = "v1beta1"
CLUSTER_API_PLURAL = "clusters"

# Label constants for record identification and management
OPERATOR_LABEL_KEY = "app.kubernetes.io/managed-by"
OPERATOR_LABEL_VALUE = "teleport-operator"
CLUSTER_NAME_LABEL = "teleport.giantswarm.io/cluster-name"
CLUSTER_NAMESPACE_LABEL = "teleport.giantswarm.io/cluster-namespace"

# Annotation written on every cluster when the operator configuration changes
CONFIG_UPDATE_ANNOTATION = "teleport.giantswarm.io/config-update"

# Operator configuration and identity
OPERATOR_CONFIG_NAME = "teleport-operator"
IDENTITY_SECRET_NAME = "identity-output"
IDENTITY_SECRET_KEY = "identity"

# Records of the management cluster live here instead of the cluster namespace
MANAGEMENT_CLUSTER_NAMESPACE = "giantswarm"

# Record naming patterns
JOIN_TOKEN_SECRET_SUFFIX = "-teleport-join-token"
CONFIG_MAP_SUFFIX = "-config"
USER_VALUES_CONFIG_MAP_SUFFIX = "-teleport-kube-agent-user-values"

# Record payload keys
JOIN_TOKEN_KEY = "joinToken"
VALUES_KEY = "values"
APPS_KEY = "apps"

# Controller-owned keys inside the agent values payload
VALUES_ROLES_KEY = "roles"
VALUES_AUTH_TOKEN_KEY = "authToken"
VALUES_PROXY_ADDR_KEY = "proxyAddr"
VALUES_KUBE_CLUSTER_NAME_KEY = "kubeClusterName"
VALUES_VERSION_OVERRIDE_KEY = "teleportVersionOverride"

# Labels carried by join tokens on the access proxy
TOKEN_CLUSTER_LABEL = "cluster"
TOKEN_ROLES_LABEL = "roles"

# Token lifetimes per role class (in seconds)
KUBE_TOKEN_TTL = 24 * 60 * 60
APP_TOKEN_TTL = 24 * 60 * 60
NODE_TOKEN_TTL = 24 * 60 * 60
BOT_TOKEN_TTL = 720 * 60 * 60

# tbot auxiliary records
TBOT_APP_NAME = "teleport-tbot"
TBOT_NAMESPACE = "giantswarm"
TBOT_CONFIG_MAP_SUFFIX = "-teleport-tbot-config"
TBOT_EXTRA_CONFIG_PRIORITY = 25
APP_API_GROUP = "application.giantswarm.io"
APP_API_VERSION = "v1alpha1"
APP_API_PLURAL = "apps"

# Timing defaults (in seconds)
DEFAULT_RECONCILE_INTERVAL = 60
DEFAULT_IDENTITY_REFRESH_INTERVAL = 300
DEFAULT_PROXY_CALL_TIMEOUT = 30

# Retry configuration
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 300.0
CONFLICT_RETRY_DELAY = 1
