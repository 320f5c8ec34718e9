"""Tests for economy.webhooks -- registration and event delivery."""

import json
import logging
import urllib.error
from typing import Any, List

import pytest

from economy.molt import MoltEngine
from economy.webhooks import EVENT_TYPES, WebhookRegistry


class FakeResponse:
    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def read(self) -> bytes:
        return b"ok"


@pytest.fixture
def sent(monkeypatch) -> List[Any]:
    requests: List[Any] = []

    def fake_urlopen(req, timeout=None):
        requests.append((req, timeout))
        return FakeResponse()

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    return requests


@pytest.fixture
def registry(clock) -> WebhookRegistry:
    return WebhookRegistry(timeout=2.0, background=False, clock=clock)


class TestRegistration:
    def test_register_filters_unknown_events(self, registry) -> None:
        assert registry.register("http://hook", ["agent.molt.completed", "agent.exploded"])
        assert [h.to_dict() for h in registry.registered()] == [
            {"url": "http://hook", "events": ["agent.molt.completed"]}
        ]

    def test_register_rejects_only_unknown(self, registry) -> None:
        assert not registry.register("http://hook", ["agent.exploded"])
        assert registry.registered() == []

    def test_unregister(self, registry) -> None:
        registry.register("http://a", EVENT_TYPES)
        registry.register("http://b", EVENT_TYPES)
        registry.unregister("http://a")
        assert [h.url for h in registry.registered()] == ["http://b"]


class TestDelivery:
    def test_posts_json_to_subscribed_hooks(self, registry, sent, clock) -> None:
        registry.register("http://molts", ["agent.molt.completed"])
        registry.register("http://decay", ["agent.decay.warning"])

        registry.notify("agent.molt.completed", "crab", {"toStage": 1})

        assert len(sent) == 1
        req, timeout = sent[0]
        assert req.full_url == "http://molts"
        assert req.get_method() == "POST"
        assert req.get_header("Content-type") == "application/json"
        assert timeout == 2.0
        assert json.loads(req.data) == {
            "event": "agent.molt.completed",
            "agentId": "crab",
            "timestamp": clock.now,
            "data": {"toStage": 1},
        }

    def test_delivery_failure_is_logged(self, registry, monkeypatch, caplog) -> None:
        def refuse(req, timeout=None):
            raise urllib.error.URLError("connection refused")

        monkeypatch.setattr("urllib.request.urlopen", refuse)
        registry.register("http://down", ["agent.posted"])
        with caplog.at_level(logging.WARNING, logger="economy.webhooks"):
            registry.notify("agent.posted", "crab", {"posts": 1})
        assert "failed to deliver agent.posted to http://down" in caplog.text

    def test_molt_engine_feeds_registry(self, registry, sent, store, clock) -> None:
        registry.register("http://hook", ["agent.molt.started", "agent.molt.completed"])
        engine = MoltEngine(store, clock=clock, notifier=registry)
        engine.update_stats("crab", {"posts": 100, "transactions": 10})
        engine.execute_molt("crab")

        events = [json.loads(req.data)["event"] for req, _ in sent]
        assert events == ["agent.molt.started", "agent.molt.completed"]
