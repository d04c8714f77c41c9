"""
Tests for the provider registry.
"""

import asyncio
import gc
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ScriptedProvider
from parley.providers.base import ProviderName
from parley.providers.errors import ProviderNotFoundError
from parley.providers.registry import ProviderRegistry


class TestRegistration:
    """Tests for register / has / lookup."""

    def test_register_and_has(self):
        registry = ProviderRegistry()
        registry.register("googleai", lambda: ScriptedProvider("googleai"))

        assert registry.has("googleai")
        assert registry.has(ProviderName.GOOGLEAI)
        assert not registry.has("deepseek")
        assert registry.registered_providers == ["googleai"]

    def test_enum_and_string_share_a_key(self):
        registry = ProviderRegistry()
        registry.register(ProviderName.DEEPSEEK, lambda: ScriptedProvider("deepseek"))

        assert registry.registered_providers == ["deepseek"]
        assert registry.has("deepseek")

    def test_factory_must_be_callable(self):
        registry = ProviderRegistry()
        with pytest.raises(TypeError):
            registry.register("bad", ScriptedProvider("bad"))

    def test_registration_is_lazy(self):
        factory = MagicMock(return_value=ScriptedProvider("googleai"))
        registry = ProviderRegistry()
        registry.register("googleai", factory)

        factory.assert_not_called()
        assert not registry.is_constructed("googleai")


class TestGet:
    """Tests for get()."""

    @pytest.mark.asyncio
    async def test_memoizes_instance(self):
        factory = MagicMock(side_effect=lambda: ScriptedProvider("googleai"))
        registry = ProviderRegistry()
        registry.register("googleai", factory)

        first = await registry.get("googleai")
        second = await registry.get(ProviderName.GOOGLEAI)

        assert first is second
        assert factory.call_count == 1
        assert registry.is_constructed("googleai")

    @pytest.mark.asyncio
    async def test_unknown_name_raises_not_found(self):
        registry = ProviderRegistry()
        registry.register("googleai", lambda: ScriptedProvider("googleai"))

        with pytest.raises(ProviderNotFoundError) as exc_info:
            await registry.get("mistral")

        assert isinstance(exc_info.value, LookupError)
        assert exc_info.value.available == ["googleai"]

    @pytest.mark.asyncio
    async def test_async_factory(self):
        provider = ScriptedProvider("deepseek")

        async def factory():
            await asyncio.sleep(0)
            return provider

        registry = ProviderRegistry()
        registry.register("deepseek", factory)

        assert await registry.get("deepseek") is provider

    @pytest.mark.asyncio
    async def test_single_flight_construction(self):
        calls = 0
        release = asyncio.Event()

        async def slow_factory():
            nonlocal calls
            calls += 1
            await release.wait()
            return ScriptedProvider("googleai")

        registry = ProviderRegistry()
        registry.register("googleai", slow_factory)

        waiters = [asyncio.ensure_future(registry.get("googleai")) for _ in range(5)]
        await asyncio.sleep(0.01)
        release.set()
        results = await asyncio.gather(*waiters)

        assert calls == 1
        assert all(result is results[0] for result in results)

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abort_construction(self):
        release = asyncio.Event()

        async def slow_factory():
            await release.wait()
            return ScriptedProvider("googleai")

        registry = ProviderRegistry()
        registry.register("googleai", slow_factory)

        impatient = asyncio.ensure_future(registry.get("googleai"))
        patient = asyncio.ensure_future(registry.get("googleai"))
        await asyncio.sleep(0.01)
        impatient.cancel()
        release.set()

        provider = await patient
        assert provider.name == "googleai"
        assert impatient.cancelled()
        assert registry.is_constructed("googleai")

    @pytest.mark.asyncio
    async def test_failed_construction_not_cached(self):
        factory = MagicMock(side_effect=[RuntimeError("no credentials"), ScriptedProvider("x")])
        registry = ProviderRegistry()
        registry.register("x", factory)

        with pytest.raises(RuntimeError, match="no credentials"):
            await registry.get("x")
        assert not registry.is_constructed("x")

        provider = await registry.get("x")
        assert provider.name == "x"
        assert factory.call_count == 2

    @pytest.mark.asyncio
    async def test_rejects_object_without_chat_interface(self):
        registry = ProviderRegistry()
        registry.register("broken", lambda: object())

        with pytest.raises(TypeError, match="name"):
            await registry.get("broken")
        assert not registry.is_constructed("broken")

    @pytest.mark.asyncio
    async def test_reregister_keeps_cached_instance(self):
        original = ScriptedProvider("googleai")
        replacement = ScriptedProvider("googleai")
        registry = ProviderRegistry()
        registry.register("googleai", lambda: original)

        assert await registry.get("googleai") is original
        registry.register("googleai", lambda: replacement)

        assert await registry.get("googleai") is original


class TestLifecycle:
    """Tests for aclose()."""

    @pytest.mark.asyncio
    async def test_aclose_closes_constructed_providers(self):
        provider = ScriptedProvider("googleai")
        provider.aclose = AsyncMock()
        untouched = MagicMock()

        registry = ProviderRegistry()
        registry.register("googleai", lambda: provider)
        registry.register("deepseek", untouched)
        await registry.get("googleai")

        await registry.aclose()

        provider.aclose.assert_awaited_once()
        untouched.assert_not_called()
        assert not registry.is_constructed("googleai")
        assert registry.has("googleai")

    @pytest.mark.asyncio
    async def test_aclose_survives_close_errors(self):
        provider = ScriptedProvider("googleai")
        provider.aclose = AsyncMock(side_effect=RuntimeError("already closed"))

        registry = ProviderRegistry()
        registry.register("googleai", lambda: provider)
        await registry.get("googleai")

        await registry.aclose()

        assert not registry.is_constructed("googleai")

    @pytest.mark.asyncio
    async def test_get_after_aclose_constructs_once(self):
        calls = 0
        release = asyncio.Event()

        async def slow_factory():
            nonlocal calls
            calls += 1
            await release.wait()
            return ScriptedProvider("googleai")

        registry = ProviderRegistry()
        registry.register("googleai", slow_factory)

        abandoned = asyncio.ensure_future(registry.get("googleai"))
        await asyncio.sleep(0.01)
        await registry.aclose()

        second = asyncio.ensure_future(registry.get("googleai"))
        await asyncio.sleep(0.01)
        third = asyncio.ensure_future(registry.get("googleai"))
        await asyncio.sleep(0.01)
        release.set()

        b, c = await asyncio.gather(second, third)

        assert b is c
        assert calls == 2
        assert abandoned.cancelled()
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_failure_with_no_waiters_is_retrieved(self):
        release = asyncio.Event()
        reported = []

        async def failing_factory():
            await release.wait()
            raise RuntimeError("no credentials")

        loop = asyncio.get_running_loop()
        previous = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            registry = ProviderRegistry()
            registry.register("googleai", failing_factory)

            waiter = asyncio.ensure_future(registry.get("googleai"))
            await asyncio.sleep(0.01)
            waiter.cancel()
            release.set()
            await asyncio.sleep(0.01)
            gc.collect()
        finally:
            loop.set_exception_handler(previous)

        assert waiter.cancelled()
        assert not registry.is_constructed("googleai")
        assert reported == []
