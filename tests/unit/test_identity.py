"""Unit tests for the identity loader and the shared proxy session handle."""

import asyncio
from datetime import timedelta

import pytest

from teleport_operator.errors import ConfigurationError, MalformedStateError
from teleport_operator.proxy.identity import Identity, IdentityLoader, ProxySessionHandle
from teleport_operator.services.config_change import ConfigHolder
from tests.fixtures.fakes import FakeAccessProxyClient


class FakeLoader:
    def __init__(self, clock, content: str = "identity-v1"):
        self.clock = clock
        self.content = content
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.reads = 0

    async def __call__(self) -> Identity:
        self.reads += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return Identity(identity_file=self.content, last_read=self.clock())


class FakeFactory:
    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.built: list[tuple[str, FakeAccessProxyClient]] = []

    async def __call__(self, proxy_addr: str, identity: Identity) -> FakeAccessProxyClient:
        if self.delay:
            await asyncio.sleep(self.delay)
        client = FakeAccessProxyClient()
        self.built.append((proxy_addr, client))
        return client


@pytest.fixture
def loader(clock):
    return FakeLoader(clock)


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def holder(controller_config):
    return ConfigHolder(controller_config)


@pytest.fixture
def handle(loader, factory, holder, clock):
    return ProxySessionHandle(
        loader, factory, holder, max_age=timedelta(minutes=5), retire_after=0, clock=clock
    )


class TestIdentity:
    def test_hash_follows_content(self):
        assert Identity("a").hash() == Identity("a").hash()
        assert Identity("a").hash() != Identity("b").hash()

    def test_age(self, clock):
        identity = Identity("a", last_read=clock())
        clock.advance(minutes=3)
        assert identity.age(clock()) == timedelta(minutes=3)


class TestIdentityLoader:
    @pytest.mark.asyncio
    async def test_reads_identity(self, records, clock):
        await records.create_secret("identity-output", "giantswarm", {"identity": "PEM DATA"})

        identity = await IdentityLoader(records, "giantswarm", clock=clock)()

        assert identity.identity_file == "PEM DATA"
        assert identity.last_read == clock()

    @pytest.mark.asyncio
    async def test_missing_secret_is_retryable(self, records):
        with pytest.raises(ConfigurationError) as exc_info:
            await IdentityLoader(records, "giantswarm")()
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_missing_key_is_malformed(self, records):
        await records.create_secret("identity-output", "giantswarm", {"other": "x"})

        with pytest.raises(MalformedStateError):
            await IdentityLoader(records, "giantswarm")()

    @pytest.mark.asyncio
    async def test_undecodable_identity_is_malformed(self, records, core_api):
        await records.create_secret("identity-output", "giantswarm", {"identity": "PEM DATA"})
        core_api.secret("identity-output", "giantswarm").data["identity"] = "%%%"

        with pytest.raises(MalformedStateError) as exc_info:
            await IdentityLoader(records, "giantswarm")()
        assert not exc_info.value.retryable


class TestProxySessionHandle:
    @pytest.mark.asyncio
    async def test_first_get_builds_session(self, handle, factory, controller_config):
        session = await handle.get()

        assert session.proxy_addr == controller_config.proxy_addr
        assert session.client is factory.built[0][1]
        assert handle.current is session

    @pytest.mark.asyncio
    async def test_refresh_is_single_flight(self, loader, holder, clock):
        factory = FakeFactory(delay=0.01)
        handle = ProxySessionHandle(loader, factory, holder, max_age=timedelta(minutes=5), clock=clock)

        sessions = await asyncio.gather(*(handle.get() for _ in range(10)))

        assert len(factory.built) == 1
        assert loader.reads == 1
        assert all(s is sessions[0] for s in sessions)

    @pytest.mark.asyncio
    async def test_fresh_session_is_not_reread(self, handle, loader):
        await handle.get()
        await handle.get()
        assert loader.reads == 1

    @pytest.mark.asyncio
    async def test_unchanged_identity_keeps_client(self, handle, loader, factory, clock):
        first = await handle.get()
        clock.advance(minutes=6)

        second = await handle.refresh()

        assert loader.reads == 2
        assert len(factory.built) == 1
        assert second.client is first.client
        assert second.identity.last_read == clock()
        assert not first.client.closed

    @pytest.mark.asyncio
    async def test_rotated_identity_swaps_client(self, handle, loader, factory, clock):
        first = await handle.get()
        clock.advance(minutes=6)
        loader.content = "identity-v2"

        second = await handle.refresh()
        await asyncio.sleep(0.01)

        assert second.client is not first.client
        assert second.identity.identity_file == "identity-v2"
        assert first.client.closed
        assert not second.client.closed

    @pytest.mark.asyncio
    async def test_stale_session_served_while_refreshing(self, handle, loader, clock):
        first = await handle.get()
        clock.advance(minutes=6)
        loader.content = "identity-v2"

        served = await handle.get()
        await asyncio.sleep(0.01)

        assert served is first
        assert handle.current.identity.identity_file == "identity-v2"

    @pytest.mark.asyncio
    async def test_proxy_address_change_rebuilds(self, handle, holder, factory, controller_config):
        await handle.get()
        holder.update(controller_config.model_copy(update={"proxy_addr": "other.example.com:443"}))

        session = await handle.refresh()

        assert session.proxy_addr == "other.example.com:443"
        assert [addr for addr, _ in factory.built] == [
            controller_config.proxy_addr,
            "other.example.com:443",
        ]

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_session(self, handle, loader, clock):
        first = await handle.get()
        clock.advance(minutes=6)
        loader.error = ConfigurationError("identity secret missing", retryable=True)

        with pytest.raises(ConfigurationError):
            await handle.refresh()

        assert handle.current is first

    @pytest.mark.asyncio
    async def test_missing_session_propagates_error(self, handle, loader):
        loader.error = ConfigurationError("identity secret missing", retryable=True)

        with pytest.raises(ConfigurationError):
            await handle.get()
        assert handle.current is None

    @pytest.mark.asyncio
    async def test_invalidate(self, handle, factory):
        first = await handle.get()

        handle.invalidate()
        assert handle.current is None
        second = await handle.get()
        await asyncio.sleep(0.01)

        assert second.client is not first.client
        assert first.client.closed
        assert len(factory.built) == 2

    @pytest.mark.asyncio
    async def test_invalidate_during_refresh_discards_result(
        self, handle, loader, factory, holder, clock, controller_config
    ):
        first = await handle.get()
        clock.advance(minutes=6)
        loader.gate = asyncio.Event()

        refresh = asyncio.create_task(handle.refresh())
        await asyncio.sleep(0)
        holder.update(controller_config.model_copy(update={"proxy_addr": "other.example.com:443"}))
        handle.invalidate()
        loader.gate.set()
        session = await refresh
        await asyncio.sleep(0.01)

        assert session.proxy_addr == "other.example.com:443"
        assert session.client is not first.client
        assert handle.current is session
        assert first.client.closed
        assert [addr for addr, _ in factory.built] == [
            controller_config.proxy_addr,
            "other.example.com:443",
        ]

    @pytest.mark.asyncio
    async def test_aclose(self, handle):
        session = await handle.get()

        await handle.aclose()

        assert session.client.closed
        assert handle.current is None
