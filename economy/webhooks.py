"""
Webhook delivery for molt lifecycle events.

Registered URLs receive a JSON POST per matching event:
    {"event": ..., "agentId": ..., "timestamp": <epoch ms>, "data": {...}}

Delivery is fire-and-forget. Failures are logged and never reach the
engine that emitted the event.
"""

import json
import logging
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from swarm.base import BaseNotifier, _now_ms

logger = logging.getLogger(__name__)

EVENT_TYPES = [
    "agent.deployed",
    "agent.claimed",
    "agent.activated",
    "agent.posted",
    "agent.molt.started",
    "agent.molt.completed",
    "agent.decay.warning",
    "agent.decay.shellrot",
]


@dataclass
class WebhookRegistration:
    url: str
    events: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "events": list(self.events)}


class WebhookRegistry(BaseNotifier):
    """In-memory webhook registrations plus delivery."""

    def __init__(
        self,
        timeout: float = 5.0,
        background: bool = True,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._timeout = timeout
        self._background = background
        self._clock = clock
        self._hooks: List[WebhookRegistration] = []
        self._lock = threading.Lock()

    def register(self, url: str, events: List[str]) -> bool:
        """Subscribe *url* to the known events in *events*.

        Returns False (and registers nothing) if none of them are known.
        """
        valid = [e for e in events if e in EVENT_TYPES]
        if not valid:
            return False
        with self._lock:
            self._hooks.append(WebhookRegistration(url=url, events=valid))
        return True

    def unregister(self, url: str) -> None:
        with self._lock:
            self._hooks = [h for h in self._hooks if h.url != url]

    def registered(self) -> List[WebhookRegistration]:
        with self._lock:
            return list(self._hooks)

    def notify(self, event: str, agent_id: str, data: Dict[str, Any]) -> None:
        payload = {
            "event": event,
            "agentId": agent_id,
            "timestamp": self._clock(),
            "data": data,
        }
        body = json.dumps(payload, default=str).encode()
        for hook in self.registered():
            if event not in hook.events:
                continue
            if self._background:
                threading.Thread(target=self._deliver, args=(hook.url, event, body), daemon=True).start()
            else:
                self._deliver(hook.url, event, body)

    def _deliver(self, url: str, event: str, body: bytes) -> None:
        req = urllib.request.Request(
            url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                resp.read()
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.warning("failed to deliver %s to %s: %s", event, url, e)
