"""Tests for handler registration."""

import pytest

from actioncue import HandlerRegistry
from actioncue.retry import RetryPolicy


class TestRegister:
    """Validation happens at registration time."""

    def test_register_and_get(self):
        registry = HandlerRegistry()

        def send(to):
            return to

        handler = registry.register("send", send, retry=4, timeout=2.5)

        assert registry.get("send") is handler
        assert handler.func is send
        assert handler.retry.max_attempts == 4
        assert handler.timeout == 2.5
        assert handler.is_async is False
        assert "send" in registry
        assert len(registry) == 1

    def test_async_detected(self):
        registry = HandlerRegistry()

        async def fetch():
            return None

        assert registry.register("fetch", fetch).is_async is True

    def test_default_retry_is_none(self):
        registry = HandlerRegistry()
        assert registry.register("x", print).retry is None

    def test_retry_dict(self):
        registry = HandlerRegistry()
        handler = registry.register("x", print, retry={"backoff": "fixed", "base_delay": 1})
        assert handler.retry == RetryPolicy(backoff="fixed", base_delay=1)

    def test_duplicate_hook(self):
        registry = HandlerRegistry()
        registry.register("x", print)
        with pytest.raises(ValueError, match="already registered"):
            registry.register("x", print)

    @pytest.mark.parametrize("hook", ["", "   ", None])
    def test_empty_hook(self, hook):
        with pytest.raises(ValueError, match="non-empty"):
            HandlerRegistry().register(hook, print)

    def test_not_callable(self):
        with pytest.raises(TypeError, match="not callable"):
            HandlerRegistry().register("x", "print")

    def test_bad_timeout(self):
        with pytest.raises(ValueError, match="timeout"):
            HandlerRegistry().register("x", print, timeout=0)

    def test_unregister_and_hooks(self):
        registry = HandlerRegistry()
        registry.register("b", print)
        registry.register("a", print)

        assert registry.hooks() == ["a", "b"]
        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        assert registry.get("a") is None
