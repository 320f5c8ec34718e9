"""
Base data models and abstract collaborators for the molt swarm economy.

Every module in the system imports from here. This file has zero
dependencies beyond the Python standard library.
"""

import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Union


# ====================================================================== #
# Exceptions
# ====================================================================== #


# themed error codes matching the swarm vernacular
ERROR_CODES: Dict[int, str] = {
    400: "CRACKED_SHELL",
    401: "NO_EXOSKELETON",
    402: "PAYMENT_REQUIRED",
    403: "SHELL_REJECTED",
    404: "EMPTY_TIDE_POOL",
    409: "SHELL_CONFLICT",
    429: "CLAW_CRAMP",
    500: "SHELL_SHATTER",
    503: "MOLTING_IN_PROGRESS",
}


def get_error_code(status: int) -> str:
    """Symbolic code for an HTTP status (unknown statuses map to SHELL_SHATTER)."""
    return ERROR_CODES.get(status, "SHELL_SHATTER")


class SwarmError(Exception):
    """Base domain error. Carries an HTTP status and its symbolic code.

    The outer layer renders every SwarmError with to_dict(), so no
    other error shape leaks to callers.
    """

    status = 500

    def __init__(self, detail: Optional[str] = None, status: Optional[int] = None) -> None:
        if status is not None:
            self.status = status
        self.code = get_error_code(self.status)
        self.detail = detail or self.code
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "status": self.status, "message": self.detail}


class MalformedProof(SwarmError):
    """Raised when a payment header cannot be decoded."""

    status = 400


class UnsupportedVersion(SwarmError):
    """Raised when a proof was produced for another protocol version."""

    status = 400

    def __init__(self, version: str) -> None:
        self.version = version
        super().__init__(f"Unsupported version: {version}")


class ResourceMismatch(SwarmError):
    """Raised when a proof pays for a different resource."""

    status = 400

    def __init__(self, expected: str, got: str) -> None:
        self.expected = expected
        self.got = got
        super().__init__(f"Resource mismatch: proof is for {got!r}, not {expected!r}")


class InsufficientAmount(SwarmError):
    """Raised when a proof pays less than the envelope price."""

    status = 400

    def __init__(self, required: Decimal, paid: Decimal) -> None:
        self.required = required
        self.paid = paid
        super().__init__(f"Insufficient payment amount: needs {required}, got {paid}")


class PaymentExpired(SwarmError):
    """Raised when a proof is older than the envelope TTL."""

    status = 400

    def __init__(self, elapsed_s: float, ttl: int) -> None:
        self.elapsed_s = elapsed_s
        self.ttl = ttl
        super().__init__(f"Payment expired (TTL exceeded): {elapsed_s:.0f}s > {ttl}s")


class InvalidSignature(SwarmError):
    """Raised when a proof signature does not verify against the payee key."""

    status = 400


class InvalidAmount(SwarmError):
    """Raised when an amount is negative or not a number."""

    status = 400

    def __init__(self, amount: Any) -> None:
        self.amount = amount
        super().__init__(f"Invalid amount: {amount} (must be a nonnegative decimal)")


class PaymentRequired(SwarmError):
    """Protocol step, not a failure: the caller must attach a payment proof."""

    status = 402

    def __init__(self, envelope: "PaymentEnvelope") -> None:
        self.envelope = envelope
        super().__init__(f"Payment required for {envelope.resource}")

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["envelope"] = self.envelope.to_dict()
        return d


class NotFound(SwarmError):
    status = 404


class Conflict(SwarmError):
    status = 409


class InternalError(SwarmError):
    status = 500


# ====================================================================== #
# Helpers
# ====================================================================== #


def _generate_id(prefix: str) -> str:
    """Generate a unique ID like 'pay_20260209T100000_a1b2c3d4'."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"{prefix}_{ts}_{secrets.token_hex(4)}"


def _now_ms() -> int:
    """Current UTC time in epoch milliseconds."""
    return int(time.time() * 1000)


def to_decimal(value: Union[str, int, float, Decimal]) -> Decimal:
    """Parse an amount into a Decimal.

    Floats go through str() so 0.01 stays 0.01.

    Raises:
        InvalidAmount: if the value is not a finite number.
    """
    if isinstance(value, bool):
        raise InvalidAmount(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(value)
    if not amount.is_finite():
        raise InvalidAmount(value)
    return amount


# ====================================================================== #
# Enumerations
# ====================================================================== #


class MoltStage(IntEnum):
    """The five ordered capability tiers."""

    LARVA = 0
    JUVENILE = 1
    SUB_ADULT = 2
    ADULT = 3
    ALPHA = 4

    @property
    def stage_name(self) -> str:
        return MOLT_STAGE_NAMES[self]

    @property
    def next(self) -> Optional["MoltStage"]:
        if self is MoltStage.ALPHA:
            return None
        return MoltStage(self + 1)


MOLT_STAGE_NAMES: Dict[MoltStage, str] = {
    MoltStage.LARVA: "Larva",
    MoltStage.JUVENILE: "Juvenile",
    MoltStage.SUB_ADULT: "Sub-adult",
    MoltStage.ADULT: "Adult",
    MoltStage.ALPHA: "Alpha",
}


class DecayStatus(str, Enum):
    """Inactivity tiers, ordered from healthy to dormant."""

    HEALTHY = "healthy"
    WARNED = "warned"
    SOFTENED = "softened"
    ROTTING = "rotting"
    DORMANT = "dormant"

    @property
    def severity(self) -> int:
        return _DECAY_ORDER.index(self)


_DECAY_ORDER = [
    DecayStatus.HEALTHY,
    DecayStatus.WARNED,
    DecayStatus.SOFTENED,
    DecayStatus.ROTTING,
    DecayStatus.DORMANT,
]


class PaymentDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    OPEN = "open"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    EXPIRED = "expired"


class TaskType(str, Enum):
    CONTENT_GENERATION = "content_generation"
    DATA_ANALYSIS = "data_analysis"
    SIGNAL_MONITORING = "signal_monitoring"
    SWARM_VOTE = "swarm_vote"


# ====================================================================== #
# Data models -- payment protocol
# ====================================================================== #


@dataclass(frozen=True)
class PaymentEnvelope:
    """Machine-readable description of what a priced resource costs."""

    price: str
    methods: List[str]
    address: str
    ttl: int
    resource: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "methods": list(self.methods),
            "address": self.address,
            "ttl": self.ttl,
            "resource": self.resource,
            "description": self.description,
        }


@dataclass(frozen=True)
class PaymentProof:
    """A caller-supplied payment claim, carried base64-encoded in X-Payment.

    payload is itself base64-encoded JSON: {resource, amount, timestamp}.
    """

    version: str
    signature: str
    payload: str

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "signature": self.signature, "payload": self.payload}


@dataclass(frozen=True)
class PaymentRecord:
    """A single payment event in the ledger. Never mutated after creation."""

    id: str
    agent_id: str
    amount: Decimal
    direction: PaymentDirection
    network: str
    tx_hash: str
    resource: str
    status: PaymentStatus = PaymentStatus.CONFIRMED
    timestamp: int = field(default_factory=_now_ms)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "amount": str(self.amount),
            "direction": self.direction.value,
            "network": self.network,
            "txHash": self.tx_hash,
            "resource": self.resource,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentRecord":
        """Deserialize from a dict."""
        return cls(
            id=data["id"],
            agent_id=data["agentId"],
            amount=to_decimal(data["amount"]),
            direction=PaymentDirection(data["direction"]),
            network=data.get("network", "default"),
            tx_hash=data.get("txHash", ""),
            resource=data.get("resource", ""),
            status=PaymentStatus(data.get("status", "confirmed")),
            timestamp=int(data.get("timestamp", 0)),
        )


# ====================================================================== #
# Data models -- molt state
# ====================================================================== #


@dataclass
class MoltHistoryEntry:
    from_stage: MoltStage
    to_stage: MoltStage
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {"fromStage": int(self.from_stage), "toStage": int(self.to_stage), "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MoltHistoryEntry":
        return cls(
            from_stage=MoltStage(data["fromStage"]),
            to_stage=MoltStage(data["toStage"]),
            timestamp=int(data["timestamp"]),
        )


@dataclass
class AgentStats:
    """Aggregates the molt engine compares against stage requirements."""

    posts: int = 0
    transactions: int = 0
    balance: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {"posts": self.posts, "transactions": self.transactions, "balance": str(self.balance)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentStats":
        return cls(
            posts=int(data.get("posts", 0)),
            transactions=int(data.get("transactions", 0)),
            balance=to_decimal(data.get("balance", "0")),
        )


@dataclass
class AgentMoltState:
    """Per-agent molt state. Created lazily at Larva/Healthy."""

    agent_id: str
    current_stage: MoltStage = MoltStage.LARVA
    molt_history: List[MoltHistoryEntry] = field(default_factory=list)
    stats: AgentStats = field(default_factory=AgentStats)
    last_molt_at: Optional[int] = None
    last_activity_at: int = field(default_factory=_now_ms)
    decay_status: DecayStatus = DecayStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "currentStage": int(self.current_stage),
            "moltHistory": [h.to_dict() for h in self.molt_history],
            "stats": self.stats.to_dict(),
            "lastMoltAt": self.last_molt_at,
            "lastActivityAt": self.last_activity_at,
            "decayStatus": self.decay_status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentMoltState":
        return cls(
            agent_id=data["agentId"],
            current_stage=MoltStage(data.get("currentStage", 0)),
            molt_history=[MoltHistoryEntry.from_dict(h) for h in data.get("moltHistory", [])],
            stats=AgentStats.from_dict(data.get("stats", {})),
            last_molt_at=data.get("lastMoltAt"),
            last_activity_at=int(data.get("lastActivityAt", 0)),
            decay_status=DecayStatus(data.get("decayStatus", "healthy")),
        )


# ====================================================================== #
# Data models -- swarm tasks
# ====================================================================== #


@dataclass
class SwarmTask:
    """A bounded, rewarded unit of work gated by minimum molt stage.

    reward is fixed at creation; status only moves forward
    (open -> claimed/expired, claimed -> completed/expired).
    """

    id: str
    type: TaskType
    description: str
    required_stage: MoltStage
    reward: Decimal
    deadline: int
    created_at: int
    assigned_agent: Optional[str] = None
    status: TaskStatus = TaskStatus.OPEN
    result: Any = None

    def is_overdue(self, now_ms: int) -> bool:
        return self.deadline < now_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "requiredStage": int(self.required_stage),
            "reward": str(self.reward),
            "deadline": self.deadline,
            "assignedAgent": self.assigned_agent,
            "status": self.status.value,
            "result": self.result,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwarmTask":
        return cls(
            id=data["id"],
            type=TaskType(data["type"]),
            description=data.get("description", ""),
            required_stage=MoltStage(data.get("requiredStage", 0)),
            reward=to_decimal(data["reward"]),
            deadline=int(data["deadline"]),
            created_at=int(data.get("createdAt", 0)),
            assigned_agent=data.get("assignedAgent"),
            status=TaskStatus(data.get("status", "open")),
            result=data.get("result"),
        )


@dataclass
class IdentityRegistration:
    """What the external identity registry hands back for a new agent."""

    external_id: str
    api_key: str = field(repr=False)
    claim_url: str = ""
    verification_code: str = ""

    def public_dict(self) -> Dict[str, Any]:
        """Everything except the API key."""
        return {
            "externalId": self.external_id,
            "claimUrl": self.claim_url,
            "verificationCode": self.verification_code,
        }


# ====================================================================== #
# Abstract base classes
# ====================================================================== #


class BaseStore(ABC):
    """Durable home for agent, task and ledger records, keyed by id."""

    @abstractmethod
    def append_payment(self, record: PaymentRecord) -> None:
        ...

    @abstractmethod
    def payments(self) -> List[PaymentRecord]:
        """All payment records in append order."""
        ...

    @abstractmethod
    def save_agent(self, state: AgentMoltState) -> None:
        ...

    @abstractmethod
    def get_agent(self, agent_id: str) -> Optional[AgentMoltState]:
        ...

    @abstractmethod
    def agents(self) -> List[AgentMoltState]:
        ...

    @abstractmethod
    def save_task(self, task: SwarmTask) -> None:
        ...

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[SwarmTask]:
        ...

    @abstractmethod
    def tasks(self) -> List[SwarmTask]:
        """All tasks in creation order."""
        ...


class BaseIdentityRegistrar(ABC):
    """External identity registry (e.g. a social network for agents)."""

    @abstractmethod
    def register(self, name: str, description: str) -> IdentityRegistration:
        """Register a new agent identity and return its credentials."""
        ...


class BaseNotifier(ABC):
    """Abstract base class for event notification channels."""

    @abstractmethod
    def notify(self, event: str, agent_id: str, data: Dict[str, Any]) -> None:
        """Send a notification about an event.

        Args:
            event: event type (e.g., "agent.molt.completed")
            agent_id: the agent the event is about
            data: event-specific data dict
        """
        ...
