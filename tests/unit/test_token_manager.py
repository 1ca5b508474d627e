"""Unit tests for join token validation, issuing and revocation."""

from datetime import timedelta

import pytest

from teleport_operator.errors import AccessProxyError, TokenNotFoundError
from teleport_operator.models.token import JoinToken, TokenRole
from teleport_operator.services.token_manager import (
    SequentialTokenGenerator,
    TokenLifecycleManager,
    proxy_call,
    token_is_valid,
)

OWNER = "golem-foo"


class TestTokenIsValid:
    @pytest.fixture
    def token(self, clock):
        return JoinToken.issue("abc", OWNER, ["kube", "app"], clock())

    def test_role_order_does_not_matter(self, token, clock):
        assert token_is_valid([token], OWNER, "abc", ["app", "kube"], clock())
        assert token_is_valid([token], OWNER, "abc", [TokenRole.KUBE, TokenRole.APP], clock())

    def test_role_subset_is_invalid(self, token, clock):
        assert not token_is_valid([token], OWNER, "abc", ["kube"], clock())

    def test_role_superset_is_invalid(self, token, clock):
        assert not token_is_valid([token], OWNER, "abc", ["kube", "app", "node"], clock())

    def test_expired_token_is_invalid(self, token, clock):
        assert not token_is_valid([token], OWNER, "abc", ["kube", "app"], clock() + timedelta(hours=24))

    def test_token_without_expiry_is_invalid(self, token, clock):
        forever = token.model_copy(update={"expires": None})
        assert not token_is_valid([forever], OWNER, "abc", ["kube", "app"], clock())

    def test_other_owner_is_invalid(self, token, clock):
        assert not token_is_valid([token], "golem-bar", "abc", ["kube", "app"], clock())

    def test_unknown_name_is_invalid(self, token, clock):
        assert not token_is_valid([token], OWNER, "def", ["kube", "app"], clock())

    def test_empty_snapshot(self, clock):
        assert not token_is_valid([], OWNER, "abc", ["kube"], clock())


class TestTokenLifecycleManager:
    @pytest.mark.asyncio
    async def test_generate_token(self, tokens, proxy, clock):
        name = await tokens.generate_token(OWNER, [TokenRole.KUBE, TokenRole.NODE])

        assert name == "token-1"
        stored = proxy.tokens[name]
        assert stored.owner == OWNER
        assert stored.roles == frozenset({"kube", "node"})
        assert stored.expires == clock() + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_fresh_names_per_call(self, tokens):
        first = await tokens.generate_token(OWNER, ["kube"])
        second = await tokens.generate_token(OWNER, ["kube"])
        assert first != second

    @pytest.mark.asyncio
    async def test_random_names_by_default(self, proxy):
        manager = TokenLifecycleManager(proxy)
        name = await manager.generate_token(OWNER, ["kube"])
        assert len(name) == 32

    @pytest.mark.asyncio
    async def test_is_token_valid_never_writes(self, tokens, proxy):
        name = await tokens.generate_token(OWNER, ["kube"])
        proxy.calls.clear()

        assert await tokens.is_token_valid(OWNER, name, ["kube"])
        assert not await tokens.is_token_valid(OWNER, name, ["kube", "app"])
        assert proxy.calls == {"get_tokens": 2}

    @pytest.mark.asyncio
    async def test_token_expires(self, tokens, clock):
        name = await tokens.generate_token(OWNER, ["kube"])
        clock.advance(hours=25)
        assert not await tokens.is_token_valid(OWNER, name, ["kube"])

    @pytest.mark.asyncio
    async def test_revoke_all_only_touches_owner(self, tokens, proxy):
        await tokens.generate_token(OWNER, ["kube"])
        await tokens.generate_token(OWNER, ["kube", "node"])
        other = await tokens.generate_token("golem-bar", ["kube"])

        assert await tokens.revoke_all(OWNER) == 2
        assert proxy.tokens_of(OWNER) == []
        assert other in proxy.tokens

    @pytest.mark.asyncio
    async def test_revoke_all_without_tokens(self, tokens, proxy):
        assert await tokens.revoke_all(OWNER) == 0
        assert proxy.calls["delete_token"] == 0

    @pytest.mark.asyncio
    async def test_non_retryable_error_keeps_classification(self, tokens, proxy):
        proxy.failures["get_tokens"] = AccessProxyError("access denied", status_code=403)

        with pytest.raises(AccessProxyError) as exc_info:
            await tokens.is_token_valid(OWNER, "abc", ["kube"])

        assert not exc_info.value.retryable
        assert OWNER in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, tokens, proxy):
        proxy.failures["upsert_token"] = RuntimeError("connection reset")

        with pytest.raises(AccessProxyError) as exc_info:
            await tokens.generate_token(OWNER, ["kube"])

        assert exc_info.value.retryable
        assert "upsert token for golem-foo" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, proxy, clock):
        proxy.delay = 1.0
        manager = TokenLifecycleManager(
            proxy, generator=SequentialTokenGenerator(), clock=clock, timeout=0.01
        )

        with pytest.raises(AccessProxyError, match="timed out"):
            await manager.list_tokens(OWNER)


class TestProxyCall:
    @pytest.mark.asyncio
    async def test_token_not_found_passes_through(self, proxy):
        with pytest.raises(TokenNotFoundError):
            await proxy_call("get token", OWNER, proxy.get_token("missing"), 1.0)

    @pytest.mark.asyncio
    async def test_returns_result(self, proxy):
        assert await proxy_call("list tokens", OWNER, proxy.get_tokens(), 1.0) == []
