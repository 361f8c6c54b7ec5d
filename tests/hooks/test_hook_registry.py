"""Tests for certwarden.hooks -- registry loading and dispatch."""

from __future__ import annotations

import threading

import pytest

from certwarden.config.settings import HookEntrySettings, HookSettings
from certwarden.hooks import KNOWN_EVENTS, Hook, HookRegistry
from certwarden.hooks.events import EVENT_METHOD_MAP


def make_hook_settings(registered=(), **kwargs) -> HookSettings:
    values = {"timeout_seconds": 30, "max_workers": 2, "max_retries": 0}
    values.update(kwargs)
    return HookSettings(registered=tuple(registered), **values)


def make_hook_entry(class_path="certwarden.hooks.base.Hook", **kwargs) -> HookEntrySettings:
    values = {"enabled": True, "events": (), "timeout_seconds": None, "config": {}}
    values.update(kwargs)
    return HookEntrySettings(class_path=class_path, **values)


class RecordingHook(Hook):
    """Collects every context it sees and signals when *expected* arrived."""

    def __init__(self, config=None, expected=1):
        super().__init__(config)
        self.calls: list[tuple[str, dict]] = []
        self._expected = expected
        self.done = threading.Event()

    def _record(self, event, ctx):
        self.calls.append((event, ctx))
        if len(self.calls) >= self._expected:
            self.done.set()

    def on_certificate_created(self, ctx):
        self._record("certificate.created", ctx)

    def on_certificate_renewed(self, ctx):
        self._record("certificate.renewed", ctx)

    def on_deploy_completed(self, ctx):
        self._record("deploy.completed", ctx)


class FailingHook(Hook):
    def __init__(self, config=None):
        super().__init__(config)
        self.attempts = 0
        self.done = threading.Event()

    def on_certificate_renewed(self, ctx):
        self.attempts += 1
        self.done.set()
        raise RuntimeError("hook broke")


class TestEvents:
    def test_every_event_maps_to_a_hook_method(self):
        for method in EVENT_METHOD_MAP.values():
            assert callable(getattr(Hook, method))
        assert KNOWN_EVENTS == {
            "certificate.created",
            "certificate.renewed",
            "certificate.deleted",
            "deploy.completed",
        }

    def test_base_hook_is_a_no_op(self):
        hook = Hook({"a": 1})
        assert hook.config == {"a": 1}
        hook.on_certificate_deleted({})
        Hook.validate_config({})


class TestLoading:
    def test_loads_configured_class(self):
        registry = HookRegistry(make_hook_settings([make_hook_entry()]))
        assert len(registry) == 1
        registry.shutdown()

    def test_disabled_entries_skipped(self):
        registry = HookRegistry(make_hook_settings([make_hook_entry(enabled=False)]))
        assert len(registry) == 0

    def test_invalid_class_path(self):
        with pytest.raises(ValueError, match="Invalid hook class path"):
            HookRegistry(make_hook_settings([make_hook_entry(class_path="nodots")]))

    def test_missing_module(self):
        with pytest.raises(ModuleNotFoundError):
            HookRegistry(make_hook_settings([make_hook_entry(class_path="no_such_pkg.mod.Hook")]))

    def test_not_a_hook(self):
        with pytest.raises(TypeError, match="subclass"):
            HookRegistry(
                make_hook_settings([make_hook_entry(class_path="certwarden.store.locks.ReadWriteLock")])
            )

    def test_register_rejects_non_hooks(self):
        registry = HookRegistry(make_hook_settings())
        with pytest.raises(TypeError):
            registry.register(object())

    def test_register_rejects_unknown_events(self):
        registry = HookRegistry(make_hook_settings())
        with pytest.raises(ValueError, match="unknown events"):
            registry.register(RecordingHook(), events=["certificate.exploded"])


class TestDispatch:
    def test_delivers_to_subscribed_hooks(self):
        registry = HookRegistry(make_hook_settings())
        hook = RecordingHook()
        registry.register(hook, events=["certificate.renewed"])
        registry.dispatch("certificate.created", {"name": "ignored"})
        registry.dispatch("certificate.renewed", {"name": "web", "new_fingerprint": "BB"})
        assert hook.done.wait(5)
        registry.shutdown()
        assert hook.calls == [("certificate.renewed", {"name": "web", "new_fingerprint": "BB"})]
        assert registry.dispatch_count == 1
        assert registry.error_count == 0

    def test_context_is_copied(self):
        registry = HookRegistry(make_hook_settings())
        hook = RecordingHook()
        registry.register(hook)
        ctx = {"name": "web", "details": [1]}
        registry.dispatch("deploy.completed", ctx)
        assert hook.done.wait(5)
        registry.shutdown()
        assert hook.calls[0][1] == ctx
        assert hook.calls[0][1]["details"] is not ctx["details"]

    def test_unknown_event(self):
        registry = HookRegistry(make_hook_settings())
        with pytest.raises(ValueError, match="Unknown hook event"):
            registry.dispatch("certificate.exploded", {})

    def test_failures_are_counted_not_raised(self, caplog):
        registry = HookRegistry(make_hook_settings())
        hook = FailingHook()
        registry.register(hook)
        with caplog.at_level("ERROR"):
            registry.dispatch("certificate.renewed", {"name": "web"})
            assert hook.done.wait(5)
            registry.shutdown()
        assert registry.error_count == 1
        assert "hook broke" in caplog.text

    def test_retries(self, monkeypatch):
        monkeypatch.setattr("certwarden.hooks.registry.time.sleep", lambda s: None)
        registry = HookRegistry(make_hook_settings(max_retries=2))
        hook = FailingHook()
        registry.register(hook)
        registry.dispatch("certificate.renewed", {})
        registry.shutdown()
        assert hook.attempts == 3
        assert registry.error_count == 1

    def test_no_dispatch_after_shutdown(self):
        registry = HookRegistry(make_hook_settings())
        hook = RecordingHook()
        registry.register(hook)
        registry.shutdown()
        registry.shutdown()
        registry.dispatch("certificate.created", {})
        assert hook.calls == []
        assert registry.is_shutdown

    def test_dispatch_without_hooks(self):
        HookRegistry(make_hook_settings()).dispatch("certificate.deleted", {"name": "x"})


class TestStoreIntegration:
    def test_store_events_reach_hooks(self, make_store):
        registry = HookRegistry(make_hook_settings())
        hook = RecordingHook(expected=2)
        registry.register(hook, events=["certificate.created", "certificate.renewed"])
        store = make_store(hooks=registry)

        cert = store.create({"name": "web"})
        old_fp = cert.fingerprint
        store.renew(old_fp)

        assert hook.done.wait(5)
        registry.shutdown()
        events = [event for event, _ in hook.calls]
        assert sorted(events) == ["certificate.created", "certificate.renewed"]
        renewed = next(ctx for event, ctx in hook.calls if event == "certificate.renewed")
        assert renewed["old_fingerprint"] == old_fp
        assert renewed["new_fingerprint"] == cert.fingerprint
