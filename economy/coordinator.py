"""
SwarmCoordinator -- the cooperative task board.

Tasks are bounded, stage-gated units of work with a fixed reward.

Task lifecycle:
  OPEN -> CLAIMED -> COMPLETED
  OPEN -> EXPIRED
  CLAIMED (past deadline) -> EXPIRED

Expiry is evaluated lazily on read: a task whose deadline has passed is
flipped to EXPIRED the next time it is scanned or claimed. Completed and
expired tasks are terminal, so a reward can only be paid once.

The coordinator holds no ledger reference. Crediting the reward and
recording the agent's activity is the caller's job (see economy.api).
"""

import logging
import threading
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from economy.locks import KeyedLocks
from swarm.base import (
    BaseStore,
    InvalidAmount,
    MoltStage,
    SwarmTask,
    TaskStatus,
    TaskType,
    _generate_id,
    _now_ms,
    to_decimal,
)

logger = logging.getLogger(__name__)

DEFAULT_TASK_TTL_MS = 60 * 60 * 1000
SEED_TASK_TTL_MS = 24 * 60 * 60 * 1000

SEED_TASKS = [
    (TaskType.CONTENT_GENERATION, "0.005", "Generate a swarm status report for m/crab-rave", MoltStage.LARVA),
    (TaskType.SIGNAL_MONITORING, "0.008", "Monitor trending submolts and report top 3 topics", MoltStage.LARVA),
    (TaskType.DATA_ANALYSIS, "0.012", "Analyze posting patterns across the swarm fleet", MoltStage.JUVENILE),
    (TaskType.SWARM_VOTE, "0.003", "Vote on next swarm coordination strategy", MoltStage.LARVA),
    (TaskType.CONTENT_GENERATION, "0.015", "Write a guide on x402 micropayment integration", MoltStage.SUB_ADULT),
    (TaskType.SIGNAL_MONITORING, "0.01", "Track new agent deployments and welcome them to the swarm", MoltStage.LARVA),
    (TaskType.DATA_ANALYSIS, "0.02", "Compile fleet-wide earnings report for the last cycle", MoltStage.JUVENILE),
    (TaskType.CONTENT_GENERATION, "0.025", "Create a molt progression guide for new agents", MoltStage.SUB_ADULT),
]


@dataclass
class ClaimResult:
    success: bool
    task: Optional[SwarmTask] = None
    error: str = ""
    status: int = 200


@dataclass
class CompletionResult:
    success: bool
    reward: Optional[Decimal] = None
    task: Optional[SwarmTask] = None
    error: str = ""
    status: int = 200


class SwarmCoordinator:
    """Creates, hands out and closes swarm tasks."""

    def __init__(
        self,
        store: BaseStore,
        clock: Callable[[], int] = _now_ms,
        default_ttl_ms: int = DEFAULT_TASK_TTL_MS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._default_ttl_ms = default_ttl_ms
        self._locks = KeyedLocks()
        self._seed_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public API -- Creation
    # ------------------------------------------------------------------ #

    def create_task(
        self,
        type: Union[str, TaskType],
        reward: Union[str, int, float, Decimal],
        description: str,
        required_stage: MoltStage = MoltStage.LARVA,
        ttl_ms: Optional[int] = None,
    ) -> SwarmTask:
        """Post an open task.

        Raises:
            InvalidAmount: if reward is negative or not a number.
            ValueError: if type is unknown or ttl_ms is not positive.
        """
        amount = to_decimal(reward)
        if amount < 0:
            raise InvalidAmount(reward)
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl}")

        now = self._clock()
        task = SwarmTask(
            id=_generate_id("task"),
            type=TaskType(type),
            description=description,
            required_stage=MoltStage(required_stage),
            reward=amount,
            deadline=now + ttl,
            created_at=now,
        )
        self._store.save_task(task)
        return task

    def seed_tasks_if_empty(self) -> List[SwarmTask]:
        """Post the starter task set once. Returns the tasks it created."""
        with self._seed_lock:
            if self._store.tasks():
                return []
            created = [
                self.create_task(task_type, reward, description, stage, SEED_TASK_TTL_MS)
                for task_type, reward, description, stage in SEED_TASKS
            ]
        logger.info("seeded %d starter tasks", len(created))
        return created

    # ------------------------------------------------------------------ #
    # Public API -- Lifecycle
    # ------------------------------------------------------------------ #

    def _expire_if_overdue(self, task: SwarmTask, now: int) -> Optional[SwarmTask]:
        """Save and return an EXPIRED copy of an overdue open/claimed task.

        Caller holds the task lock.
        """
        if task.status in (TaskStatus.OPEN, TaskStatus.CLAIMED) and task.is_overdue(now):
            expired = replace(task, status=TaskStatus.EXPIRED)
            self._store.save_task(expired)
            return expired
        return None

    def get_available_tasks(self, agent_stage: MoltStage) -> List[SwarmTask]:
        """Open, unexpired tasks the given stage may claim."""
        now = self._clock()
        available = []
        for listed in self._store.tasks():
            if listed.status is not TaskStatus.OPEN:
                continue
            with self._locks.hold(listed.id):
                task = self._store.get_task(listed.id)
                if task is None or task.status is not TaskStatus.OPEN:
                    continue
                if self._expire_if_overdue(task, now) is not None:
                    continue
            if agent_stage >= task.required_stage:
                available.append(task)
        return available

    def claim_task(self, task_id: str, agent_id: str, agent_stage: MoltStage) -> ClaimResult:
        """Hand an open task to an agent.

        The stored task is replaced only after the store accepts the claimed
        copy, so a failed save leaves it OPEN.
        """
        with self._locks.hold(task_id):
            task = self._store.get_task(task_id)
            if task is None:
                return ClaimResult(success=False, error="Task not found", status=404)
            if task.status is not TaskStatus.OPEN:
                return ClaimResult(success=False, error=f"Task not available ({task.status.value})", status=409)
            if self._expire_if_overdue(task, self._clock()) is not None:
                return ClaimResult(success=False, error="Task expired", status=409)
            if agent_stage < task.required_stage:
                return ClaimResult(
                    success=False,
                    error=f"Requires {task.required_stage.stage_name} stage or higher",
                    status=409,
                )

            claimed = replace(task, status=TaskStatus.CLAIMED, assigned_agent=agent_id)
            self._store.save_task(claimed)
            return ClaimResult(success=True, task=claimed)

    def complete_task(self, task_id: str, result: Any = None) -> CompletionResult:
        """Close a claimed task. Only CLAIMED -> COMPLETED pays out.

        Store errors propagate and the task stays CLAIMED, so the caller
        may retry and the reward is still owed.
        """
        with self._locks.hold(task_id):
            task = self._store.get_task(task_id)
            if task is None:
                return CompletionResult(success=False, error="Task not found", status=404)
            if task.status is not TaskStatus.CLAIMED:
                return CompletionResult(success=False, error="Task not claimed", status=409)
            if self._expire_if_overdue(task, self._clock()) is not None:
                return CompletionResult(success=False, error="Task expired", status=409)

            completed = replace(task, status=TaskStatus.COMPLETED, result=result)
            self._store.save_task(completed)
            return CompletionResult(success=True, reward=completed.reward, task=completed)

    # ------------------------------------------------------------------ #
    # Public API -- Queries
    # ------------------------------------------------------------------ #

    def get_task(self, task_id: str) -> Optional[SwarmTask]:
        return self._store.get_task(task_id)

    def get_tasks_by_agent(self, agent_id: str) -> List[SwarmTask]:
        return [t for t in self._store.tasks() if t.assigned_agent == agent_id]

    def get_all_tasks(self) -> List[SwarmTask]:
        return self._store.tasks()

    def get_stats(self) -> Dict[str, Any]:
        counts = {status: 0 for status in TaskStatus}
        rewards = Decimal("0")
        tasks = self._store.tasks()
        for task in tasks:
            counts[task.status] += 1
            if task.status is TaskStatus.COMPLETED:
                rewards += task.reward
        return {
            "total": len(tasks),
            "open": counts[TaskStatus.OPEN],
            "claimed": counts[TaskStatus.CLAIMED],
            "completed": counts[TaskStatus.COMPLETED],
            "expired": counts[TaskStatus.EXPIRED],
            "totalRewardsDistributed": rewards,
        }
