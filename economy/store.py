"""
Record stores for agents, tasks and ledger entries.

MemoryStore keeps everything in process. JsonFileStore adds the same
JSON-on-disk persistence the token ledger always used: one file per
record kind, rewritten on every change and loaded at startup.
"""

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from swarm.base import AgentMoltState, BaseStore, PaymentRecord, SwarmTask


class MemoryStore(BaseStore):
    """In-process store. State lives for the store's lifetime."""

    def __init__(self) -> None:
        self._payments: List[PaymentRecord] = []
        self._agents: Dict[str, AgentMoltState] = {}
        self._tasks: Dict[str, SwarmTask] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Payments
    # ------------------------------------------------------------------ #

    def append_payment(self, record: PaymentRecord) -> None:
        with self._lock:
            self._payments.append(record)

    def payments(self) -> List[PaymentRecord]:
        with self._lock:
            return list(self._payments)

    # ------------------------------------------------------------------ #
    # Agents
    # ------------------------------------------------------------------ #

    def save_agent(self, state: AgentMoltState) -> None:
        with self._lock:
            self._agents[state.agent_id] = state

    def get_agent(self, agent_id: str) -> Optional[AgentMoltState]:
        with self._lock:
            return self._agents.get(agent_id)

    def agents(self) -> List[AgentMoltState]:
        with self._lock:
            return list(self._agents.values())

    # ------------------------------------------------------------------ #
    # Tasks
    # ------------------------------------------------------------------ #

    def save_task(self, task: SwarmTask) -> None:
        with self._lock:
            self._tasks[task.id] = task

    def get_task(self, task_id: str) -> Optional[SwarmTask]:
        with self._lock:
            return self._tasks.get(task_id)

    def tasks(self) -> List[SwarmTask]:
        with self._lock:
            return list(self._tasks.values())


class JsonFileStore(MemoryStore):
    """MemoryStore persisted to JSON files under storage_dir.

    Write errors propagate as OSError; callers decide whether a failed
    write is fatal. A failed save_agent/save_task leaves the previously
    stored record in place. A failed append_payment keeps the record in
    memory, matching the ledger's availability-over-durability contract.

    Every change rewrites its whole file, and the coordinator and molt
    engine save while holding the entity's lock. Contention is therefore
    per entity plus the store-wide write lock, and each write costs time
    linear in the number of stored records of that kind.
    """

    PAYMENTS_FILE = "payment_ledger.json"
    AGENTS_FILE = "molt_states.json"
    TASKS_FILE = "swarm_tasks.json"

    def __init__(self, storage_dir: Union[str, Path] = "storage") -> None:
        super().__init__()
        self._storage_dir = Path(storage_dir)
        self._storage_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    def append_payment(self, record: PaymentRecord) -> None:
        with self._lock:
            super().append_payment(record)
            self._write(self.PAYMENTS_FILE, [p.to_dict() for p in self._payments])

    def save_agent(self, state: AgentMoltState) -> None:
        with self._lock:
            agents = dict(self._agents)
            agents[state.agent_id] = state
            self._write(self.AGENTS_FILE, [a.to_dict() for a in agents.values()])
            self._agents = agents

    def save_task(self, task: SwarmTask) -> None:
        with self._lock:
            tasks = dict(self._tasks)
            tasks[task.id] = task
            self._write(self.TASKS_FILE, [t.to_dict() for t in tasks.values()])
            self._tasks = tasks

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def _write(self, name: str, data: list) -> None:
        path = self._storage_dir / name
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        tmp.replace(path)

    def _read(self, name: str) -> list:
        path = self._storage_dir / name
        if not path.exists():
            return []
        with open(path, "r") as f:
            return json.load(f)

    def _load(self) -> None:
        """Load state from disk. If files don't exist, start fresh."""
        self._payments = [PaymentRecord.from_dict(p) for p in self._read(self.PAYMENTS_FILE)]
        for raw in self._read(self.AGENTS_FILE):
            state = AgentMoltState.from_dict(raw)
            self._agents[state.agent_id] = state
        for raw in self._read(self.TASKS_FILE):
            task = SwarmTask.from_dict(raw)
            self._tasks[task.id] = task
