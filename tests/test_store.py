"""Tests for economy.store -- in-memory and JSON-file record stores."""

import json
import threading
from decimal import Decimal

import pytest

from economy.ledger import PaymentLedger
from economy.molt import MoltEngine
from economy.store import JsonFileStore, MemoryStore
from swarm.base import (
    AgentMoltState,
    MoltHistoryEntry,
    MoltStage,
    PaymentDirection,
    PaymentRecord,
    SwarmTask,
    TaskStatus,
    TaskType,
)


def make_payment(pid: str = "p1") -> PaymentRecord:
    return PaymentRecord(
        id=pid, agent_id="crab", amount=Decimal("0.5"), direction=PaymentDirection.INBOUND,
        network="default", tx_hash="00" * 32, resource="task:1", timestamp=1,
    )


def make_task(tid: str = "t1") -> SwarmTask:
    return SwarmTask(
        id=tid, type=TaskType.DATA_ANALYSIS, description="analyze", required_stage=MoltStage.JUVENILE,
        reward=Decimal("0.012"), deadline=100, created_at=1,
    )


class TestMemoryStore:
    def test_payments_append_only(self) -> None:
        store = MemoryStore()
        store.append_payment(make_payment("a"))
        store.append_payment(make_payment("b"))
        snapshot = store.payments()
        snapshot.clear()
        assert [p.id for p in store.payments()] == ["a", "b"]

    def test_agents_and_tasks(self) -> None:
        store = MemoryStore()
        store.save_agent(AgentMoltState(agent_id="crab", last_activity_at=0))
        store.save_task(make_task())
        assert store.get_agent("crab").current_stage is MoltStage.LARVA
        assert store.get_agent("ghost") is None
        assert store.get_task("t1").reward == Decimal("0.012")
        assert [t.id for t in store.tasks()] == ["t1"]
        assert len(store.agents()) == 1


class TestJsonFileStore:
    def test_creates_directory(self, tmp_path) -> None:
        target = tmp_path / "nested" / "storage"
        JsonFileStore(target)
        assert target.is_dir()

    def test_fresh_start_without_files(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path)
        assert store.payments() == []
        assert store.agents() == []
        assert store.tasks() == []

    def test_round_trip_across_instances(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path)
        store.append_payment(make_payment())
        state = AgentMoltState(agent_id="crab", current_stage=MoltStage.JUVENILE, last_activity_at=7)
        state.molt_history.append(MoltHistoryEntry(MoltStage.LARVA, MoltStage.JUVENILE, 5))
        store.save_agent(state)
        task = make_task()
        task.status = TaskStatus.CLAIMED
        task.assigned_agent = "crab"
        store.save_task(task)

        reloaded = JsonFileStore(tmp_path)
        assert reloaded.payments() == [make_payment()]
        assert reloaded.get_agent("crab") == state
        restored = reloaded.get_task("t1")
        assert restored.status is TaskStatus.CLAIMED
        assert restored.assigned_agent == "crab"

    def test_files_are_plain_json(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path)
        store.append_payment(make_payment())
        with open(tmp_path / JsonFileStore.PAYMENTS_FILE) as f:
            data = json.load(f)
        assert data[0]["amount"] == "0.5"
        assert not list(tmp_path.glob("*.tmp"))

    def test_corrupt_file_raises(self, tmp_path) -> None:
        (tmp_path / JsonFileStore.TASKS_FILE).write_text("{not json")
        with pytest.raises(ValueError):
            JsonFileStore(tmp_path)

    def test_ledger_append_not_blocked_by_agent_lock(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path)
        ledger = PaymentLedger(store)
        molt = MoltEngine(store, ledger=ledger)
        appended = threading.Event()

        def pay() -> None:
            ledger.record_transaction("crab", "1", "inbound", "task")
            appended.set()

        with molt._locks.hold("crab"):
            worker = threading.Thread(target=pay)
            worker.start()
            assert appended.wait(timeout=5)
        worker.join()
        assert len(JsonFileStore(tmp_path).payments()) == 1

    def test_failed_agent_save_keeps_previous_state(self, tmp_path, monkeypatch) -> None:
        store = JsonFileStore(tmp_path)
        store.save_agent(AgentMoltState(agent_id="crab", last_activity_at=1))

        def disk_full(name, data) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(store, "_write", disk_full)
        with pytest.raises(OSError):
            store.save_agent(AgentMoltState(agent_id="crab", current_stage=MoltStage.ADULT, last_activity_at=2))
        with pytest.raises(OSError):
            store.save_agent(AgentMoltState(agent_id="lobster", last_activity_at=2))
        assert store.get_agent("crab").current_stage is MoltStage.LARVA
        assert store.get_agent("lobster") is None
