"""
Operator identity and the shared access proxy session.

The identity file is written by tbot into a Secret and rotates underneath
the operator. :class:`ProxySessionHandle` is the single accessor for the
(client, identity) pair used by every reconciliation:

- readers take the current :class:`ProxySession` without locking; a session
  is immutable, so a reader never sees a client paired with a different
  identity;
- refreshes are single-flight; reading the Secret and building (and
  pinging) the new client happen before the reference swap;
- a stale session keeps being handed out while a background refresh runs,
  only a missing session makes callers wait;
- replaced clients are closed after a grace delay so in-flight calls on
  them can finish.
"""

import asyncio
import contextlib
import hashlib
import logging
import os
import ssl
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from ..constants import IDENTITY_SECRET_KEY, IDENTITY_SECRET_NAME
from ..errors import ConfigurationError, MalformedStateError
from ..models.config import ControllerConfig
from ..observability.metrics import metrics_collector
from ..utils.circuit_breaker import ProxyCircuitBreaker
from ..utils.records import RecordManager, decode_secret_value
from .client import AccessProxyClient
from .http_client import HttpAccessProxyClient

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Identity:
    """Identity file contents and when they were read."""

    identity_file: str
    last_read: datetime = field(default_factory=utcnow)

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utcnow()) - self.last_read

    def hash(self) -> str:
        return hashlib.sha512(self.identity_file.encode()).hexdigest()

    def ssl_context(self) -> ssl.SSLContext:
        """TLS context presenting the identity's certificate and key."""
        context = ssl.create_default_context()
        # load_cert_chain only accepts paths
        fd, path = tempfile.mkstemp(prefix="teleport-identity-")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(self.identity_file)
            context.load_cert_chain(path)
        finally:
            os.unlink(path)
        return context


class IdentityLoader:
    """Reads the identity Secret tbot maintains in the operator namespace."""

    def __init__(
        self,
        records: RecordManager,
        namespace: str,
        name: str = IDENTITY_SECRET_NAME,
        key: str = IDENTITY_SECRET_KEY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.records = records
        self.namespace = namespace
        self.name = name
        self.key = key
        self.clock = clock

    async def __call__(self) -> Identity:
        secret = await self.records.get_secret(self.name, self.namespace)
        if secret is None:
            raise ConfigurationError(
                f"identity secret {self.namespace}/{self.name} not found",
                retryable=True,
                user_action="Check that tbot is running and writing its output secret",
            )
        identity_file = decode_secret_value(secret, self.key)
        if not identity_file:
            raise MalformedStateError(
                f"identity secret {self.namespace}/{self.name} has no {self.key!r} key"
            )
        return Identity(identity_file=identity_file, last_read=self.clock())


@dataclass(frozen=True)
class ProxySession:
    """A proxy client together with the identity and address it was built for."""

    client: AccessProxyClient
    identity: Identity
    proxy_addr: str


ClientFactory = Callable[[str, Identity], Awaitable[AccessProxyClient]]


class ProxySessionHandle:
    """
    Guarded accessor for the shared :class:`ProxySession`.

    Args:
        loader: Reads the current identity
        factory: Builds and verifies a client for (proxy address, identity)
        config_source: Returns the current controller configuration
        max_age: Identity age after which a refresh is started
        retire_after: Seconds a replaced client stays open
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[Identity]],
        factory: ClientFactory,
        config_source: Callable[[], ControllerConfig],
        max_age: timedelta,
        retire_after: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._loader = loader
        self._factory = factory
        self._config_source = config_source
        self.max_age = max_age
        self.retire_after = retire_after
        self._clock = clock

        self._session: ProxySession | None = None
        self._generation = 0
        self._refresh_lock = asyncio.Lock()
        self._refresh_task: asyncio.Task | None = None
        self._retiring: set[asyncio.Task] = set()

    @property
    def current(self) -> ProxySession | None:
        return self._session

    def _usable(self, session: ProxySession | None) -> bool:
        return (
            session is not None
            and session.proxy_addr == self._config_source().proxy_addr
            and session.identity.age(self._clock()) < self.max_age
        )

    async def get(self) -> ProxySession:
        """
        Return the session to use for one reconciliation attempt.

        Waits for a refresh only when there is no session at all.
        """
        session = self._session
        if session is None:
            return await self.refresh()
        if not self._usable(session):
            self._schedule_refresh()
        return session

    def _schedule_refresh(self) -> None:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._background_refresh())

    async def _background_refresh(self) -> None:
        try:
            await self.refresh()
        except Exception as e:
            # The stale session keeps serving; the next get() schedules again
            logger.warning(f"Background identity refresh failed: {e}")

    async def refresh(self) -> ProxySession:
        """
        Re-read the identity and swap in a new session if needed.

        Concurrent callers wait for the refresh in progress and get its
        result. An unchanged identity for an unchanged address keeps the
        existing client and only renews the read timestamp.

        A refresh overtaken by :meth:`invalidate` discards what it built and
        starts over.

        Raises:
            Exception: Whatever the loader or factory raised; the previous
                session stays in place
        """
        async with self._refresh_lock:
            while True:
                current = self._session
                if self._usable(current):
                    return current

                generation = self._generation
                proxy_addr = self._config_source().proxy_addr
                try:
                    identity = await self._loader()
                    if (
                        current is not None
                        and current.proxy_addr == proxy_addr
                        and current.identity.hash() == identity.hash()
                    ):
                        session = ProxySession(current.client, identity, proxy_addr)
                        outcome = "reused"
                    else:
                        client = await self._factory(proxy_addr, identity)
                        session = ProxySession(client, identity, proxy_addr)
                        outcome = "rebuilt"
                except Exception:
                    metrics_collector.record_identity_refresh("failed")
                    raise

                if generation != self._generation:
                    # invalidate() ran while loading; start over from its state
                    if outcome == "rebuilt":
                        await session.client.aclose()
                    logger.info(f"Discarding access proxy session for {proxy_addr}, invalidated")
                    continue

                self._session = session
                if current is not None and current.client is not session.client:
                    self._retire(current.client)

                metrics_collector.record_identity_refresh(
                    outcome, session.identity.age(self._clock()).total_seconds()
                )
                logger.info(f"Access proxy session {outcome} for {proxy_addr}")
                return session

    def invalidate(self) -> None:
        """Drop the current session; the next get() builds a new one."""
        current = self._session
        self._session = None
        self._generation += 1
        if current is not None:
            self._retire(current.client)
            logger.info(f"Access proxy session for {current.proxy_addr} invalidated")

    def _retire(self, client: AccessProxyClient) -> None:
        task = asyncio.create_task(self._close_later(client))
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)

    async def _close_later(self, client: AccessProxyClient) -> None:
        try:
            await asyncio.sleep(self.retire_after)
        finally:
            await client.aclose()

    async def aclose(self) -> None:
        """Close the current client and every client still being retired."""
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._refresh_task
        for task in list(self._retiring):
            task.cancel()
        if self._retiring:
            await asyncio.gather(*self._retiring, return_exceptions=True)
        if self._session is not None:
            await self._session.client.aclose()
            self._session = None


def http_client_factory(
    timeout: float, fail_max: int, reset_seconds: int
) -> ClientFactory:
    """Factory building pinged :class:`HttpAccessProxyClient` instances."""
    async def factory(proxy_addr: str, identity: Identity) -> AccessProxyClient:
        client = HttpAccessProxyClient(
            proxy_addr,
            timeout=timeout,
            verify=identity.ssl_context(),
            breaker=ProxyCircuitBreaker(proxy_addr, fail_max, reset_seconds),
        )
        try:
            await client.ping()
        except Exception:
            await client.aclose()
            raise
        return client

    return factory
