"""
Access proxy client contract.

The reconciliation engine only talks to the access proxy through this
protocol. Production uses :class:`~.http_client.HttpAccessProxyClient`;
tests use an in-memory fake.
"""

from typing import Protocol

from pydantic import BaseModel, ConfigDict

from ..models.token import JoinToken


class KubeServer(BaseModel):
    """A kubernetes agent registration in the proxy's registry."""

    model_config = ConfigDict(frozen=True)

    name: str
    host_id: str


class AccessProxyClient(Protocol):
    """
    Operations the operator needs from the access proxy.

    Deletes are idempotent: deleting something that does not exist succeeds.
    ``get_token`` raises :class:`~teleport_operator.errors.TokenNotFoundError`
    for an unknown name; every other failure is an
    :class:`~teleport_operator.errors.AccessProxyError`.
    """

    async def ping(self) -> None: ...

    async def get_token(self, name: str) -> JoinToken: ...

    async def get_tokens(self) -> list[JoinToken]: ...

    async def create_token(self, token: JoinToken) -> None: ...

    async def upsert_token(self, token: JoinToken) -> None: ...

    async def delete_token(self, name: str) -> None: ...

    async def get_kubernetes_servers(self) -> list[KubeServer]: ...

    async def delete_kubernetes_server(self, host_id: str, name: str) -> None: ...

    async def aclose(self) -> None: ...
