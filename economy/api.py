"""
SwarmAPI -- the route layer that composes the engines.

Framework-free: a request is (method, path, query, headers, body) and a
response is (status, body, headers). economy.server adapts it to
http.server; tests call handle() directly.

Endpoints:
  GET  /health
  GET  /api/x402/info                     protocol version and methods
  GET  /api/x402/receipts/<id>            receipt minted by a payment gate
  GET  <gated resource>                   x402-priced resources from config
  POST /api/agents/register               register an identity (if configured)
  GET  /api/agents/<id>/wallet            balance, stage, recent payments
  POST /api/agents/<id>/molt              attempt a molt
  GET  /api/agents/<id>/molt-status       progress, decay and eligibility
  POST /api/agents/<id>/activity          record activity / new posts
  GET  /api/swarm/tasks?stage=N           open tasks for a stage
  GET  /api/swarm/stats                   task board statistics
  POST /api/swarm/tasks/<id>/claim        claim a task
  POST /api/swarm/tasks/<id>/complete     complete a task and get paid
  GET  /api/webhooks                      registered webhooks
  POST /api/webhooks                      register a webhook

Every failure leaves as the uniform {error, status, message} envelope.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from economy import x402
from economy.config import EconomyConfig
from economy.coordinator import SwarmCoordinator
from economy.ledger import PaymentLedger
from economy.molt import MoltEngine
from economy.payment_gate import PaymentContext, PaymentGate
from economy.signatures import build_verifier
from economy.store import JsonFileStore, MemoryStore
from economy.webhooks import WebhookRegistry
from swarm.base import (
    BaseIdentityRegistrar,
    BaseStore,
    Conflict,
    InternalError,
    MoltStage,
    NotFound,
    PaymentDirection,
    PaymentRequired,
    SwarmError,
    _now_ms,
)

logger = logging.getLogger(__name__)

WALLET_HISTORY = 20


@dataclass
class ApiRequest:
    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class ApiResponse:
    status: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


Handler = Callable[..., ApiResponse]
GatedHandler = Callable[[ApiRequest, PaymentContext], Dict[str, Any]]


def _ok(body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> ApiResponse:
    return ApiResponse(status=200, body=body, headers=headers or {})


def _error_response(err: SwarmError) -> ApiResponse:
    headers = {}
    if isinstance(err, PaymentRequired):
        headers = x402.envelope_headers(err.envelope)
    return ApiResponse(status=err.status, body=err.to_dict(), headers=headers)


def _parse_stage(value: Any, default: MoltStage = MoltStage.LARVA) -> MoltStage:
    try:
        stage = int(value)
    except (TypeError, ValueError):
        return default
    if MoltStage.LARVA <= stage <= MoltStage.ALPHA:
        return MoltStage(stage)
    return default


class SwarmAPI:
    """Routes requests to the payment gates, ledger, molt engine and task board."""

    def __init__(
        self,
        store: BaseStore,
        ledger: PaymentLedger,
        molt: MoltEngine,
        coordinator: SwarmCoordinator,
        webhooks: Optional[WebhookRegistry] = None,
        registrar: Optional[BaseIdentityRegistrar] = None,
        clock: Callable[[], int] = _now_ms,
        x402_version: str = x402.X402_VERSION,
        history_limit: int = WALLET_HISTORY,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.molt = molt
        self.coordinator = coordinator
        self.webhooks = webhooks
        self.registrar = registrar
        self._clock = clock
        self._x402_version = x402_version
        self._history_limit = history_limit
        self._gates: Dict[str, Tuple[PaymentGate, GatedHandler]] = {}
        self._routes: List[Tuple[str, Pattern, Handler]] = []

        self._route("GET", r"/health", self._health)
        self._route("GET", r"/api/x402/info", self._x402_info)
        self._route("GET", r"/api/x402/receipts/(?P<receipt_id>[^/]+)", self._receipt)
        self._route("POST", r"/api/agents/register", self._register)
        self._route("GET", r"/api/agents/(?P<agent_id>[^/]+)/wallet", self._wallet)
        self._route("POST", r"/api/agents/(?P<agent_id>[^/]+)/molt", self._molt)
        self._route("GET", r"/api/agents/(?P<agent_id>[^/]+)/molt-status", self._molt_status)
        self._route("POST", r"/api/agents/(?P<agent_id>[^/]+)/activity", self._activity)
        self._route("GET", r"/api/swarm/tasks", self._tasks)
        self._route("GET", r"/api/swarm/stats", self._swarm_stats)
        self._route("POST", r"/api/swarm/tasks/(?P<task_id>[^/]+)/claim", self._claim)
        self._route("POST", r"/api/swarm/tasks/(?P<task_id>[^/]+)/complete", self._complete)
        self._route("GET", r"/api/webhooks", self._list_webhooks)
        self._route("POST", r"/api/webhooks", self._add_webhook)

    @classmethod
    def from_config(
        cls,
        config: EconomyConfig,
        clock: Callable[[], int] = _now_ms,
        registrar: Optional[BaseIdentityRegistrar] = None,
    ) -> "SwarmAPI":
        """Wire up a store, engines and gates from configuration."""
        store: BaseStore = JsonFileStore(config.storage_dir) if config.storage_dir else MemoryStore()
        webhooks = WebhookRegistry(timeout=config.webhook_timeout, clock=clock)
        ledger = PaymentLedger(store, network=config.ledger_network, clock=clock)
        molt = MoltEngine(store, ledger=ledger, clock=clock, notifier=webhooks)
        coordinator = SwarmCoordinator(store, clock=clock, default_ttl_ms=config.default_task_ttl_ms)
        api = cls(
            store, ledger, molt, coordinator,
            webhooks=webhooks, registrar=registrar, clock=clock,
            x402_version=config.x402_version,
            history_limit=config.history_limit,
        )
        verifier = build_verifier(config.signature_keys)
        for gate_config in config.gated_resources:
            api.add_gated_resource(PaymentGate(
                gate_config,
                verifier=verifier,
                clock=clock,
                version=config.x402_version,
                default_ttl=config.default_ttl,
            ))
        if config.seed_on_startup:
            coordinator.seed_tasks_if_empty()
        return api

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    def _route(self, method: str, pattern: str, handler: Handler) -> None:
        self._routes.append((method, re.compile(f"^{pattern}/?$"), handler))

    def add_gated_resource(self, gate: PaymentGate, handler: Optional[GatedHandler] = None) -> None:
        """Serve gate.resource (GET) behind an x402 payment."""
        self._gates[gate.resource.rstrip("/") or "/"] = (gate, handler or self._default_gated_body)

    def handle(self, request: ApiRequest) -> ApiResponse:
        try:
            path = request.path.rstrip("/") or "/"
            if request.method == "GET" and path in self._gates:
                return self._serve_gated(request, *self._gates[path])
            for method, pattern, handler in self._routes:
                match = pattern.match(request.path)
                if match and method == request.method:
                    return handler(request, **match.groupdict())
            raise NotFound(f"No route for {request.method} {request.path}")
        except SwarmError as e:
            return _error_response(e)
        except Exception:
            logger.exception("unhandled error on %s %s", request.method, request.path)
            return _error_response(InternalError("Internal error"))

    # ------------------------------------------------------------------ #
    # x402
    # ------------------------------------------------------------------ #

    def _health(self, request: ApiRequest) -> ApiResponse:
        return _ok({"status": "ok", "tasks": len(self.coordinator.get_all_tasks())})

    def _x402_info(self, request: ApiRequest) -> ApiResponse:
        return _ok({
            "version": self._x402_version,
            "methods": list(x402.SUPPORTED_METHODS),
            "networks": ["base-sepolia", "base-mainnet"],
            "resources": [gate.envelope.to_dict() for gate, _ in self._gates.values()],
        })

    def _receipt(self, request: ApiRequest, receipt_id: str) -> ApiResponse:
        for gate, _ in self._gates.values():
            context = gate.get_receipt(receipt_id)
            if context is not None:
                return _ok(context.receipt())
        raise NotFound(f"Receipt {receipt_id} not found")

    def _serve_gated(self, request: ApiRequest, gate: PaymentGate, handler: GatedHandler) -> ApiResponse:
        context = gate(request.headers)

        headers = {x402.HEADER_RECEIPT_URL: context.receipt_url}
        agent_id = request.header(x402.HEADER_SWARM_ID)
        if agent_id:
            method = request.header(x402.HEADER_PAYMENT_METHOD)
            self.ledger.record_transaction(
                agent_id, context.amount, PaymentDirection.OUTBOUND, gate.resource, network=method
            )
            self.molt.record_activity(agent_id)
            headers[x402.HEADER_MOLT_STAGE] = str(int(self.molt.get_stage(agent_id)))

        return _ok(handler(request, context), headers=headers)

    def _default_gated_body(self, request: ApiRequest, context: PaymentContext) -> Dict[str, Any]:
        return {
            "resource": context.envelope.resource,
            "data": context.envelope.description,
            "receiptId": context.receipt_id,
            "timestamp": self._clock(),
        }

    # ------------------------------------------------------------------ #
    # Agents
    # ------------------------------------------------------------------ #

    def _register(self, request: ApiRequest) -> ApiResponse:
        if self.registrar is None:
            raise NotFound("Identity registration is not configured")
        name = request.body.get("name")
        if not name:
            raise SwarmError("name required", status=400)
        registration = self.registrar.register(name, str(request.body.get("description", "")))
        self.molt.get_or_create(registration.external_id)
        if self.webhooks is not None:
            self.webhooks.notify("agent.deployed", registration.external_id, {"name": name})
        body = registration.public_dict()
        body["agentId"] = registration.external_id
        return _ok(body)

    def _wallet(self, request: ApiRequest, agent_id: str) -> ApiResponse:
        progress = self.molt.get_molt_progress(agent_id)
        history = self.ledger.get_payment_history(agent_id, self._history_limit)
        return _ok({
            "agentId": agent_id,
            "balance": str(self.ledger.get_net_balance(agent_id)),
            "totalTransactions": self.ledger.get_transaction_count(agent_id),
            "stage": int(progress.current_stage),
            "stageName": progress.stage_name,
            "moltProgress": progress.progress,
            "recentTransactions": [r.to_dict() for r in history],
        })

    def _molt(self, request: ApiRequest, agent_id: str) -> ApiResponse:
        result = self.molt.execute_molt(agent_id)
        if not result.success:
            raise Conflict(result.error)
        self.molt.record_activity(agent_id)
        return _ok({
            "success": True,
            "newStage": int(result.stage),
            "message": f"Molt complete, welcome to {result.stage.stage_name} stage",
        })

    def _molt_status(self, request: ApiRequest, agent_id: str) -> ApiResponse:
        decay = self.molt.check_decay(agent_id)
        progress = self.molt.get_molt_progress(agent_id)
        eligibility = self.molt.check_molt_eligibility(agent_id)
        body = {"agentId": agent_id}
        body.update(progress.to_dict())
        body.update({
            "decayStatus": decay.value,
            "eligible": eligibility.eligible,
            "nextStage": eligibility.to_dict()["nextStage"],
            "cooldownMs": eligibility.cooldown_ms,
            "requirements": eligibility.requirements.to_dict() if eligibility.requirements else None,
            "unmet": eligibility.unmet,
        })
        return _ok(body)

    def _activity(self, request: ApiRequest, agent_id: str) -> ApiResponse:
        posts = request.body.get("posts", 0)
        if not isinstance(posts, int) or isinstance(posts, bool) or posts < 0:
            raise SwarmError("posts must be a nonnegative integer", status=400)
        if posts:
            self.molt.increment_posts(agent_id, posts)
            if self.webhooks is not None:
                self.webhooks.notify("agent.posted", agent_id, {"posts": posts})
        self.molt.record_activity(agent_id)
        state = self.molt.get_or_create(agent_id)
        return _ok({
            "agentId": agent_id,
            "posts": state.stats.posts,
            "decayStatus": state.decay_status.value,
        })

    # ------------------------------------------------------------------ #
    # Swarm tasks
    # ------------------------------------------------------------------ #

    def _tasks(self, request: ApiRequest) -> ApiResponse:
        stage = _parse_stage(request.query.get("stage"))
        tasks = self.coordinator.get_available_tasks(stage)
        return _ok({"tasks": [t.to_dict() for t in tasks]})

    def _swarm_stats(self, request: ApiRequest) -> ApiResponse:
        stats = self.coordinator.get_stats()
        stats["totalRewardsDistributed"] = str(stats["totalRewardsDistributed"])
        return _ok(stats)

    def _claim(self, request: ApiRequest, task_id: str) -> ApiResponse:
        agent_id = request.body.get("agentId")
        if not agent_id:
            raise SwarmError("agentId required", status=400)

        # never let a caller claim above the stage the engine knows about
        stage = self.molt.get_stage(agent_id)
        if "stage" in request.body:
            stage = min(stage, _parse_stage(request.body["stage"], default=stage))

        result = self.coordinator.claim_task(task_id, agent_id, stage)
        if not result.success:
            raise SwarmError(result.error, status=result.status)

        self.molt.record_activity(agent_id)
        return _ok({"success": True, "task": result.task.to_dict()})

    def _complete(self, request: ApiRequest, task_id: str) -> ApiResponse:
        task = self.coordinator.get_task(task_id)
        if task is None:
            raise NotFound("Task not found")

        completion = self.coordinator.complete_task(task_id, request.body.get("result"))
        if not completion.success:
            raise SwarmError(completion.error, status=completion.status)

        agent_id = completion.task.assigned_agent
        reward: Decimal = completion.reward
        self.ledger.record_transaction(agent_id, reward, PaymentDirection.INBOUND, f"task:{task_id}")
        self.molt.record_activity(agent_id)

        return _ok({
            "success": True,
            "reward": str(reward),
            "message": "Task completed, reward credited",
        })

    # ------------------------------------------------------------------ #
    # Webhooks
    # ------------------------------------------------------------------ #

    def _require_webhooks(self) -> WebhookRegistry:
        if self.webhooks is None:
            raise NotFound("Webhooks are not configured")
        return self.webhooks

    def _list_webhooks(self, request: ApiRequest) -> ApiResponse:
        hooks = self._require_webhooks().registered()
        return _ok({"webhooks": [h.to_dict() for h in hooks]})

    def _add_webhook(self, request: ApiRequest) -> ApiResponse:
        url = request.body.get("url")
        events = request.body.get("events") or []
        if not url or not isinstance(events, list):
            raise SwarmError("url and events[] required", status=400)
        if not self._require_webhooks().register(url, events):
            raise SwarmError("No known event types in events[]", status=400)
        return _ok({"success": True, "url": url})
