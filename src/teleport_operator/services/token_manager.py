"""
Join token lifecycle on the access proxy.

Tokens are owned by a register name through their ``cluster`` label.
Validity is decided by :func:`token_is_valid`, a pure function over one
snapshot of the proxy's tokens; :class:`TokenLifecycleManager` wraps it
with the proxy reads and writes, timeouts and error context.
"""

import asyncio
import itertools
import uuid
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from typing import Protocol, TypeVar

from ..errors import AccessProxyError, OperatorError, TokenNotFoundError
from ..models.token import JoinToken, TokenRole, format_roles, role_set
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..proxy.client import AccessProxyClient

T = TypeVar("T")


class TokenGenerator(Protocol):
    def __call__(self) -> str: ...


def random_token_name() -> str:
    return uuid.uuid4().hex


class SequentialTokenGenerator:
    """Deterministic names (``<prefix>-1``, ``<prefix>-2``, ...)."""

    def __init__(self, prefix: str = "token"):
        self.prefix = prefix
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self.prefix}-{next(self._counter)}"


def utcnow() -> datetime:
    return datetime.now(UTC)


async def proxy_call(
    operation: str, owner: str, call: Awaitable[T], timeout: float
) -> T:
    """
    Await an access proxy call under ``timeout``.

    Raises:
        AccessProxyError: On timeout, or wrapping any non-operator error,
            with the operation and owner in the message
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except TimeoutError as e:
        raise AccessProxyError(
            f"{operation} for {owner} timed out after {timeout}s", cause=e
        ) from e
    except TokenNotFoundError:
        raise
    except OperatorError as e:
        raise AccessProxyError(
            f"{operation} for {owner} failed: {e.args[0]}",
            retryable=e.retryable,
            cause=e,
        ) from e
    except Exception as e:
        raise AccessProxyError(f"{operation} for {owner} failed: {e}", cause=e) from e


def token_is_valid(
    tokens: Iterable[JoinToken],
    owner: str,
    name: str,
    roles: Iterable[TokenRole | str],
    now: datetime,
) -> bool:
    """
    Whether ``name`` is a current token of ``owner`` granting exactly ``roles``.

    A token counts only if its owner label matches, it has an expiry, the
    expiry lies after ``now`` and its role set equals ``roles``. Role order
    does not matter.
    """
    wanted = role_set(roles)
    for token in tokens:
        if token.name != name or token.owner != owner:
            continue
        if token.expires is None or token.expires <= now:
            continue
        if token.roles == wanted:
            return True
    return False


class TokenLifecycleManager:
    """
    Issues, validates and revokes join tokens for register names.

    Args:
        client: Access proxy client of the current session
        generator: Produces token names; random UUIDs by default
        clock: Source of "now" for expiries and validity checks
        timeout: Seconds each proxy call may take
    """

    def __init__(
        self,
        client: AccessProxyClient,
        generator: TokenGenerator | None = None,
        clock: Callable[[], datetime] = utcnow,
        timeout: float = 30.0,
    ):
        self.client = client
        self.generator = generator or random_token_name
        self.clock = clock
        self.timeout = timeout
        self.logger = OperatorLogger(self.__class__.__name__)

    async def _call(self, operation: str, owner: str, call: Awaitable[T]) -> T:
        return await proxy_call(operation, owner, call, self.timeout)

    async def generate_token(self, owner: str, roles: Iterable[TokenRole | str]) -> str:
        """
        Create a fresh token for ``owner`` and return its name.

        The expiry follows the shortest TTL among ``roles``.
        """
        token = JoinToken.issue(self.generator(), owner, roles, self.clock())
        await self._call("upsert token", owner, self.client.upsert_token(token))

        roles_label = format_roles(token.roles)
        metrics_collector.record_token_issued(roles_label)
        self.logger.log_token_event("issued", owner, roles_label)
        return token.name

    async def list_tokens(self, owner: str) -> list[JoinToken]:
        return await self._call("list tokens", owner, self.client.get_tokens())

    async def is_token_valid(
        self, owner: str, name: str, roles: Iterable[TokenRole | str]
    ) -> bool:
        """Check ``name`` against one read of all tokens; never writes."""
        tokens = await self.list_tokens(owner)
        return token_is_valid(tokens, owner, name, roles, self.clock())

    async def revoke_all(self, owner: str) -> int:
        """
        Delete every token labelled with ``owner``.

        Returns:
            Number of tokens deleted; zero when there were none
        """
        tokens = [t for t in await self.list_tokens(owner) if t.owner == owner]
        for token in tokens:
            await self._call("delete token", owner, self.client.delete_token(token.name))
            self.logger.log_token_event("revoked", owner, format_roles(token.roles))
        metrics_collector.record_tokens_revoked(len(tokens))
        return len(tokens)
