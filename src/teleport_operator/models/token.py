"""
Join token model and role classes.

Join tokens live on the access proxy. The operator identifies the tokens it
owns through the ``cluster`` label and compares role sets as sets, so
``kube,app`` and ``app,kube`` describe the same token.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..constants import (
    APP_TOKEN_TTL,
    BOT_TOKEN_TTL,
    KUBE_TOKEN_TTL,
    NODE_TOKEN_TTL,
    TOKEN_CLUSTER_LABEL,
    TOKEN_ROLES_LABEL,
)


class TokenRole(str, Enum):
    """Role classes a join token can grant."""

    KUBE = "kube"
    APP = "app"
    NODE = "node"
    BOT = "bot"


ROLE_TTLS: dict[TokenRole, int] = {
    TokenRole.KUBE: KUBE_TOKEN_TTL,
    TokenRole.APP: APP_TOKEN_TTL,
    TokenRole.NODE: NODE_TOKEN_TTL,
    TokenRole.BOT: BOT_TOKEN_TTL,
}


def role_set(roles: Iterable[TokenRole | str]) -> frozenset[str]:
    """Normalize roles to a set of their wire values."""
    return frozenset(TokenRole(r).value for r in roles)


def format_roles(roles: Iterable[TokenRole | str]) -> str:
    """Render roles as the sorted comma separated form used in labels."""
    return ",".join(sorted(role_set(roles)))


def parse_roles(value: str) -> frozenset[str]:
    """Parse a comma separated role string, keeping unknown roles verbatim."""
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def token_ttl(roles: Iterable[TokenRole | str]) -> timedelta:
    """
    Lifetime for a token granting ``roles``.

    A token with several roles lives as long as its shortest-lived role.

    Raises:
        ValueError: If ``roles`` is empty
    """
    normalized = role_set(roles)
    if not normalized:
        raise ValueError("a join token needs at least one role")
    return timedelta(seconds=min(ROLE_TTLS[TokenRole(r)] for r in normalized))


class JoinToken(BaseModel):
    """A provisioning token as stored on the access proxy."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Secret token value, also its identifier")
    roles: frozenset[str] = Field(..., description="Roles granted by the token")
    expires: datetime | None = Field(
        None, description="Expiry; None means the proxy reported no expiry"
    )
    labels: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def issue(
        cls,
        name: str,
        owner: str,
        roles: Iterable[TokenRole | str],
        now: datetime,
    ) -> "JoinToken":
        """Build a fresh token for ``owner`` expiring after the role-class TTL."""
        normalized = role_set(roles)
        return cls(
            name=name,
            roles=normalized,
            expires=now + token_ttl(normalized),
            labels={
                TOKEN_CLUSTER_LABEL: owner,
                TOKEN_ROLES_LABEL: format_roles(normalized),
            },
        )

    @property
    def owner(self) -> str | None:
        return self.labels.get(TOKEN_CLUSTER_LABEL)
