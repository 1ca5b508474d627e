"""
Access proxy integration: the client contract, the HTTP client and the
identity-backed session shared by all reconciliations.
"""

from .client import AccessProxyClient, KubeServer
from .identity import Identity, IdentityLoader, ProxySession, ProxySessionHandle

__all__ = [
    "AccessProxyClient",
    "KubeServer",
    "Identity",
    "IdentityLoader",
    "ProxySession",
    "ProxySessionHandle",
]
