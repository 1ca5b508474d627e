"""
HTTP access proxy client.

Talks JSON to the access proxy's HTTP gateway, authenticating with the
operator identity as TLS client certificate. Every call goes through a
circuit breaker; 5xx responses and transport failures count against it.
"""

import logging
import ssl
from datetime import datetime
from typing import Any

import httpx

from ..errors import AccessProxyError, TokenNotFoundError
from ..models.token import JoinToken, parse_roles
from ..observability.metrics import metrics_collector
from ..utils.circuit_breaker import CircuitBreakerError, ProxyCircuitBreaker
from .client import KubeServer

logger = logging.getLogger(__name__)

TOKENS_PATH = "/v1/webapi/tokens"
KUBE_SERVERS_PATH = "/v1/webapi/kubeservers"
PING_PATH = "/webapi/ping"
TOKEN_NAME_HEADER = "X-Teleport-TokenName"

# The proxy reports "no expiry" as Go's zero time
ZERO_TIME_PREFIX = "0001-01-01"


def _base_url(proxy_addr: str) -> str:
    if proxy_addr.startswith(("http://", "https://")):
        return proxy_addr.rstrip("/")
    return f"https://{proxy_addr}"


def token_to_json(token: JoinToken) -> dict[str, Any]:
    return {
        "name": token.name,
        "roles": sorted(token.roles),
        "expires": token.expires.isoformat() if token.expires else None,
        "labels": dict(token.labels),
    }


def token_from_json(data: dict[str, Any]) -> JoinToken:
    roles = data.get("roles") or []
    if isinstance(roles, str):
        roles = parse_roles(roles)

    expires_raw = data.get("expires")
    expires = None
    if expires_raw and not str(expires_raw).startswith(ZERO_TIME_PREFIX):
        expires = datetime.fromisoformat(str(expires_raw))

    return JoinToken(
        name=data.get("name") or data["id"],
        roles=frozenset(roles),
        expires=expires,
        labels=data.get("labels") or {},
    )


class HttpAccessProxyClient:
    """
    Access proxy client over HTTPS.

    Args:
        proxy_addr: ``host:port`` or URL of the proxy
        timeout: Per-request timeout in seconds
        verify: SSL context carrying the identity, or a bool for plain TLS
        breaker: Circuit breaker shared by all calls of this client
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        proxy_addr: str,
        timeout: float = 30.0,
        verify: ssl.SSLContext | bool = True,
        breaker: ProxyCircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.proxy_addr = proxy_addr
        self.breaker = breaker
        self._client = httpx.AsyncClient(
            base_url=_base_url(proxy_addr),
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        allow_status: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send one request through the circuit breaker.

        Raises:
            AccessProxyError: On transport errors, an open circuit, or a
                non-2xx status not listed in ``allow_status``
        """
        try:
            if self.breaker:
                response = await self.breaker.call(self._send, method, path, **kwargs)
            else:
                response = await self._send(method, path, **kwargs)
        except CircuitBreakerError as e:
            metrics_collector.record_proxy_request(operation, success=False)
            raise AccessProxyError(f"{operation}: circuit open", cause=e) from e
        except httpx.HTTPStatusError as e:
            metrics_collector.record_proxy_request(operation, success=False)
            raise AccessProxyError(
                f"{operation}: {e.response.text[:512]}",
                status_code=e.response.status_code,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            metrics_collector.record_proxy_request(operation, success=False)
            raise AccessProxyError(f"{operation}: {e!r}", cause=e) from e

        if response.is_success or response.status_code in allow_status:
            metrics_collector.record_proxy_request(operation, success=True)
            return response

        metrics_collector.record_proxy_request(operation, success=False)
        raise AccessProxyError(
            f"{operation}: {response.text[:512]}", status_code=response.status_code
        )

    async def ping(self) -> None:
        await self._request("ping", "GET", PING_PATH)

    async def get_tokens(self) -> list[JoinToken]:
        response = await self._request("get_tokens", "GET", TOKENS_PATH)
        return [token_from_json(item) for item in response.json().get("items", [])]

    async def get_token(self, name: str) -> JoinToken:
        for token in await self.get_tokens():
            if token.name == name:
                return token
        raise TokenNotFoundError(name)

    async def create_token(self, token: JoinToken) -> None:
        await self._request("create_token", "POST", TOKENS_PATH, json=token_to_json(token))

    async def upsert_token(self, token: JoinToken) -> None:
        await self._request("upsert_token", "PUT", TOKENS_PATH, json=token_to_json(token))

    async def delete_token(self, name: str) -> None:
        await self._request(
            "delete_token",
            "DELETE",
            TOKENS_PATH,
            allow_status=(404,),
            headers={TOKEN_NAME_HEADER: name},
        )

    async def get_kubernetes_servers(self) -> list[KubeServer]:
        response = await self._request("get_kubernetes_servers", "GET", KUBE_SERVERS_PATH)
        return [
            KubeServer(name=item["name"], host_id=item["host_id"])
            for item in response.json().get("items", [])
        ]

    async def delete_kubernetes_server(self, host_id: str, name: str) -> None:
        await self._request(
            "delete_kubernetes_server",
            "DELETE",
            f"{KUBE_SERVERS_PATH}/{host_id}/{name}",
            allow_status=(404,),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
