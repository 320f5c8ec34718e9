"""
MoltEngine -- per-agent stage progression with inactivity decay.

Agents climb five ordered stages (Larva -> Juvenile -> Sub-adult -> Adult
-> Alpha) one step at a time. Each step has activity requirements and a
cooldown measured from the previous molt. Independently, time since the
agent's last activity moves it along a decay axis (healthy -> warned ->
softened -> rotting -> dormant); entering the rotting band costs exactly
one stage.

Both triggers, voluntary molt and decay demotion, go through a single
transition function that enforces the one-step invariant. Every
check-then-act runs under the agent's lock.

When a ledger is attached, transaction count and net balance are pulled
from it at eligibility time and update_stats refuses to set them; posts
are always pushed by callers (update_stats / increment_posts) because the
engine has no view of the content feed.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from economy.ledger import PaymentLedger
from economy.locks import KeyedLocks
from swarm.base import (
    MOLT_STAGE_NAMES,
    AgentMoltState,
    AgentStats,
    BaseNotifier,
    BaseStore,
    DecayStatus,
    MoltHistoryEntry,
    MoltStage,
    _now_ms,
    to_decimal,
)

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

# inactivity needed to enter each decay tier
DECAY_THRESHOLDS: Dict[DecayStatus, int] = {
    DecayStatus.WARNED: 24 * HOUR_MS,     # molt progress pauses
    DecayStatus.SOFTENED: 72 * HOUR_MS,   # priority drops
    DecayStatus.ROTTING: 7 * DAY_MS,      # loses most recent molt stage
    DecayStatus.DORMANT: 30 * DAY_MS,     # stops all autonomous activity
}

EVENT_MOLT_STARTED = "agent.molt.started"
EVENT_MOLT_COMPLETED = "agent.molt.completed"
EVENT_DECAY_WARNING = "agent.decay.warning"
EVENT_DECAY_SHELLROT = "agent.decay.shellrot"

# stats fields owned by the ledger when one is attached
LEDGER_DERIVED_STATS = ("transactions", "balance")


@dataclass(frozen=True)
class MoltRequirements:
    """What an agent must have accumulated to molt into a stage."""

    posts: int
    transactions: int
    positive_balance: bool = False
    sustained_earnings: bool = False
    top_earner_percent: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "posts": self.posts,
            "transactions": self.transactions,
            "positiveBalance": self.positive_balance,
            "sustainedEarnings": self.sustained_earnings,
        }
        if self.top_earner_percent is not None:
            d["topEarnerPercent"] = self.top_earner_percent
        return d


MOLT_REQUIREMENTS: Dict[MoltStage, MoltRequirements] = {
    MoltStage.LARVA: MoltRequirements(posts=0, transactions=0),
    MoltStage.JUVENILE: MoltRequirements(posts=100, transactions=10),
    MoltStage.SUB_ADULT: MoltRequirements(posts=500, transactions=50, positive_balance=True),
    MoltStage.ADULT: MoltRequirements(posts=2000, transactions=200, sustained_earnings=True),
    MoltStage.ALPHA: MoltRequirements(
        posts=10000, transactions=1000, sustained_earnings=True, top_earner_percent=10
    ),
}

MOLT_COOLDOWNS: Dict[Tuple[MoltStage, MoltStage], int] = {
    (MoltStage.LARVA, MoltStage.JUVENILE): 0,
    (MoltStage.JUVENILE, MoltStage.SUB_ADULT): 24 * HOUR_MS,
    (MoltStage.SUB_ADULT, MoltStage.ADULT): 72 * HOUR_MS,
    (MoltStage.ADULT, MoltStage.ALPHA): 7 * DAY_MS,
}

MOLT_UNLOCKS: Dict[MoltStage, List[str]] = {
    MoltStage.LARVA: ["Basic posting", "Identity on Moltbook"],
    MoltStage.JUVENILE: ["Enhanced content generation", "Basic earnings"],
    MoltStage.SUB_ADULT: ["Swarm awareness", "Agent-to-agent messaging"],
    MoltStage.ADULT: ["Full swarm coordination", "Premium endpoints"],
    MoltStage.ALPHA: ["Swarm leadership", "Resource allocation", "Molt mentoring"],
}


# ====================================================================== #
# Stage rules
# ====================================================================== #


def get_cooldown_remaining(
    last_molt_at: Optional[int], from_stage: MoltStage, to_stage: MoltStage, now_ms: int
) -> int:
    """Milliseconds until a from->to molt is allowed (0 if allowed now)."""
    cooldown = MOLT_COOLDOWNS.get((from_stage, to_stage), 0)
    if cooldown == 0 or last_molt_at is None:
        return 0
    return max(0, cooldown - (now_ms - last_molt_at))


def unmet_requirements(
    req: MoltRequirements, stats: AgentStats, sustained: bool, top_earner: bool
) -> List[str]:
    """Human-readable list of requirements *stats* does not meet."""
    unmet = []
    if stats.posts < req.posts:
        unmet.append(f"posts {stats.posts}/{req.posts}")
    if stats.transactions < req.transactions:
        unmet.append(f"transactions {stats.transactions}/{req.transactions}")
    if req.positive_balance and stats.balance <= 0:
        unmet.append("positive balance")
    if req.sustained_earnings and not sustained:
        unmet.append("sustained earnings")
    if req.top_earner_percent is not None and not top_earner:
        unmet.append(f"top {req.top_earner_percent}% earner")
    return unmet


def highest_qualifying_stage(
    stats: AgentStats, sustained: bool = False, top_earner: bool = False
) -> MoltStage:
    """The highest stage whose requirements (and all below) *stats* meets."""
    stage = MoltStage.LARVA
    for candidate in list(MoltStage)[1:]:
        if unmet_requirements(MOLT_REQUIREMENTS[candidate], stats, sustained, top_earner):
            break
        stage = candidate
    return stage


def decay_tier(inactive_ms: int) -> DecayStatus:
    """Decay status for a given stretch of inactivity."""
    status = DecayStatus.HEALTHY
    for tier, threshold in DECAY_THRESHOLDS.items():
        if inactive_ms >= threshold:
            status = tier
    return status


# ====================================================================== #
# Results
# ====================================================================== #


@dataclass
class MoltEligibility:
    eligible: bool
    next_stage: Optional[MoltStage]
    requirements: Optional[MoltRequirements]
    progress: Dict[str, float] = field(default_factory=dict)
    cooldown_ms: int = 0
    unmet: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "nextStage": int(self.next_stage) if self.next_stage is not None else None,
            "requirements": self.requirements.to_dict() if self.requirements else None,
            "progress": dict(self.progress),
            "cooldownMs": self.cooldown_ms,
            "unmet": list(self.unmet),
        }


@dataclass
class MoltResult:
    success: bool
    stage: Optional[MoltStage] = None
    error: str = ""
    status: int = 200
    cooldown_ms: int = 0


@dataclass
class MoltProgress:
    current_stage: MoltStage
    stage_name: str
    decay_status: DecayStatus
    progress: Dict[str, float]
    unlocks: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentStage": int(self.current_stage),
            "stageName": self.stage_name,
            "decayStatus": self.decay_status.value,
            "progress": dict(self.progress),
            "unlocks": list(self.unlocks),
        }


EventCallback = Callable[[str, Dict[str, Any]], None]


# ====================================================================== #
# Engine
# ====================================================================== #


class MoltEngine:
    """Stage state machine for every agent in a store."""

    def __init__(
        self,
        store: BaseStore,
        ledger: Optional[PaymentLedger] = None,
        clock: Callable[[], int] = _now_ms,
        notifier: Optional[BaseNotifier] = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._clock = clock
        self._notifier = notifier
        self._locks = KeyedLocks()
        self._listeners: List[EventCallback] = []

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    def on_event(self, callback: EventCallback) -> None:
        self._listeners.append(callback)

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, payload)
            except Exception:
                logger.exception("molt event listener failed for %s", event)
        if self._notifier is not None:
            try:
                self._notifier.notify(event, payload["agentId"], payload)
            except Exception:
                logger.exception("notifier failed for %s", event)

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    def get_or_create(self, agent_id: str) -> AgentMoltState:
        """Return the agent's state, creating it at Larva/Healthy on first use."""
        with self._locks.hold(agent_id):
            state = self._store.get_agent(agent_id)
            if state is None:
                state = AgentMoltState(agent_id=agent_id, last_activity_at=self._clock())
                self._store.save_agent(state)
            return state

    def update_stats(self, agent_id: str, patch: Dict[str, Any]) -> AgentStats:
        """Merge externally computed aggregates into the agent's snapshot.

        Raises:
            ValueError: on keys other than posts/transactions/balance, or on
                transactions/balance when a ledger is attached.
        """
        unknown = set(patch) - {"posts", "transactions", "balance"}
        if unknown:
            raise ValueError(f"Unknown stats fields: {sorted(unknown)}")
        derived = set(patch) & set(LEDGER_DERIVED_STATS)
        if derived and self._ledger is not None:
            raise ValueError(f"Stats fields {sorted(derived)} are derived from the ledger")
        with self._locks.hold(agent_id):
            state = self.get_or_create(agent_id)
            if "posts" in patch:
                state.stats.posts = int(patch["posts"])
            if "transactions" in patch:
                state.stats.transactions = int(patch["transactions"])
            if "balance" in patch:
                state.stats.balance = to_decimal(patch["balance"])
            self._store.save_agent(state)
            return state.stats

    def increment_posts(self, agent_id: str, count: int = 1) -> int:
        with self._locks.hold(agent_id):
            state = self.get_or_create(agent_id)
            state.stats.posts += count
            self._store.save_agent(state)
            return state.stats.posts

    def record_activity(self, agent_id: str) -> None:
        """Every agent action calls this: resets the decay clock."""
        with self._locks.hold(agent_id):
            state = self.get_or_create(agent_id)
            state.last_activity_at = self._clock()
            state.decay_status = DecayStatus.HEALTHY
            self._store.save_agent(state)

    def _refresh_stats(self, state: AgentMoltState) -> None:
        if self._ledger is None:
            return
        state.stats.transactions = self._ledger.get_transaction_count(state.agent_id)
        state.stats.balance = self._ledger.get_net_balance(state.agent_id)

    def _transition(self, state: AgentMoltState, to_stage: MoltStage, trigger: str) -> MoltStage:
        """Move one step up (molt) or one step down (decay)."""
        from_stage = state.current_stage
        step = 1 if trigger == "molt" else -1
        if to_stage != from_stage + step:
            raise ValueError(f"illegal {trigger} transition {from_stage.name} -> {to_stage.name}")
        now = self._clock()
        state.current_stage = to_stage
        state.molt_history.append(MoltHistoryEntry(from_stage=from_stage, to_stage=to_stage, timestamp=now))
        if trigger == "molt":
            state.last_molt_at = now
        self._store.save_agent(state)
        logger.info("%s %s: %s -> %s", state.agent_id, trigger, from_stage.name, to_stage.name)
        return from_stage

    # ------------------------------------------------------------------ #
    # Public API -- Molting
    # ------------------------------------------------------------------ #

    def _evaluate(self, state: AgentMoltState) -> MoltEligibility:
        if state.current_stage >= MoltStage.ALPHA:
            return MoltEligibility(eligible=False, next_stage=None, requirements=None)

        next_stage = MoltStage(state.current_stage + 1)
        req = MOLT_REQUIREMENTS[next_stage]
        stats = state.stats
        sustained = stats.balance > 0
        top_earner = False
        if req.top_earner_percent is not None and self._ledger is not None:
            top_earner = self._ledger.is_top_earner(state.agent_id, req.top_earner_percent)

        progress: Dict[str, float] = {
            "posts": min(1.0, stats.posts / req.posts) if req.posts > 0 else 1.0,
            "transactions": min(1.0, stats.transactions / req.transactions) if req.transactions > 0 else 1.0,
        }
        if req.positive_balance:
            progress["positiveBalance"] = 1.0 if stats.balance > 0 else 0.0
        if req.sustained_earnings:
            progress["sustainedEarnings"] = 1.0 if sustained else 0.0
        if req.top_earner_percent is not None:
            progress["topEarner"] = 1.0 if top_earner else 0.0

        cooldown_ms = get_cooldown_remaining(
            state.last_molt_at, state.current_stage, next_stage, self._clock()
        )
        unmet = unmet_requirements(req, stats, sustained, top_earner)
        return MoltEligibility(
            eligible=not unmet and cooldown_ms == 0,
            next_stage=next_stage,
            requirements=req,
            progress=progress,
            cooldown_ms=cooldown_ms,
            unmet=unmet,
        )

    def check_molt_eligibility(self, agent_id: str) -> MoltEligibility:
        with self._locks.hold(agent_id):
            state = self.get_or_create(agent_id)
            self._refresh_stats(state)
            self._store.save_agent(state)
            return self._evaluate(state)

    def execute_molt(self, agent_id: str) -> MoltResult:
        """Advance one stage if eligible right now; otherwise say why not."""
        with self._locks.hold(agent_id):
            state = self.get_or_create(agent_id)
            self._refresh_stats(state)
            eligibility = self._evaluate(state)

            if not eligibility.eligible:
                if eligibility.next_stage is None:
                    error = f"Already at {state.current_stage.stage_name}, the final stage"
                elif eligibility.unmet:
                    error = "Requirements not met: " + ", ".join(eligibility.unmet)
                else:
                    error = f"cooldown: {math.ceil(eligibility.cooldown_ms / 1000)}s remaining"
                return MoltResult(
                    success=False,
                    stage=state.current_stage,
                    error=error,
                    status=409,
                    cooldown_ms=eligibility.cooldown_ms,
                )

            to_stage = eligibility.next_stage
            self._emit(EVENT_MOLT_STARTED, {
                "agentId": agent_id,
                "fromStage": int(state.current_stage),
                "toStage": int(to_stage),
            })
            from_stage = self._transition(state, to_stage, "molt")
            self._emit(EVENT_MOLT_COMPLETED, {
                "agentId": agent_id,
                "fromStage": int(from_stage),
                "toStage": int(to_stage),
                "unlocks": list(MOLT_UNLOCKS[to_stage]),
                "stageName": MOLT_STAGE_NAMES[to_stage],
            })
            return MoltResult(success=True, stage=to_stage)

    # ------------------------------------------------------------------ #
    # Public API -- Decay
    # ------------------------------------------------------------------ #

    def check_decay(self, agent_id: str) -> DecayStatus:
        """Recompute the decay tier; demote once on entering the rotting band."""
        with self._locks.hold(agent_id):
            state = self.get_or_create(agent_id)
            inactive = self._clock() - state.last_activity_at
            previous = state.decay_status
            status = decay_tier(inactive)

            if status == previous:
                return status

            rot = DecayStatus.ROTTING.severity
            if status.severity >= rot > previous.severity and state.current_stage > MoltStage.LARVA:
                from_stage = self._transition(state, MoltStage(state.current_stage - 1), "decay")
                self._emit(EVENT_DECAY_SHELLROT, {
                    "agentId": agent_id,
                    "fromStage": int(from_stage),
                    "toStage": int(state.current_stage),
                })

            if previous is DecayStatus.HEALTHY:
                self._emit(EVENT_DECAY_WARNING, {"agentId": agent_id, "inactiveMs": inactive})

            state.decay_status = status
            self._store.save_agent(state)
            logger.info("%s decay: %s -> %s", agent_id, previous.value, status.value)
            return status

    # ------------------------------------------------------------------ #
    # Public API -- Read-only views
    # ------------------------------------------------------------------ #

    def get_molt_progress(self, agent_id: str) -> MoltProgress:
        with self._locks.hold(agent_id):
            state = self.get_or_create(agent_id)
            self._refresh_stats(state)
            eligibility = self._evaluate(state)
            return MoltProgress(
                current_stage=state.current_stage,
                stage_name=MOLT_STAGE_NAMES[state.current_stage],
                decay_status=state.decay_status,
                progress=eligibility.progress,
                unlocks=list(MOLT_UNLOCKS[state.current_stage]),
            )

    def get_stage(self, agent_id: str) -> MoltStage:
        return self.get_or_create(agent_id).current_stage
