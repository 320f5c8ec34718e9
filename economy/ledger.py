"""
PaymentLedger -- append-only record of payment events per agent.

Balances are never stored: every aggregate is derived by replaying the
confirmed records, so the ledger cannot drift from its own history.

Persistence failures are logged and swallowed. The record stays in the
in-memory ledger and the call succeeds (availability over durability).
"""

import logging
import math
import secrets
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Union

from swarm.base import (
    BaseStore,
    InvalidAmount,
    PaymentDirection,
    PaymentRecord,
    PaymentStatus,
    _generate_id,
    _now_ms,
    to_decimal,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class PaymentLedger:
    """Records payments and answers balance/count/history queries."""

    def __init__(
        self,
        store: BaseStore,
        network: str = "default",
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._network = network
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Public API -- Recording
    # ------------------------------------------------------------------ #

    def record_transaction(
        self,
        agent_id: str,
        amount: Union[str, int, float, Decimal],
        direction: Union[str, PaymentDirection],
        resource: str,
        network: Optional[str] = None,
    ) -> PaymentRecord:
        """Append a confirmed payment for *agent_id* and return it.

        Raises:
            InvalidAmount: if amount is negative or not a number.
            ValueError: if direction is not inbound/outbound.
        """
        value = to_decimal(amount)
        if value < 0:
            raise InvalidAmount(amount)

        record = PaymentRecord(
            id=_generate_id("pay"),
            agent_id=agent_id,
            amount=value,
            direction=PaymentDirection(direction),
            network=network or self._network,
            tx_hash=secrets.token_hex(32),
            resource=resource,
            status=PaymentStatus.CONFIRMED,
            timestamp=self._clock(),
        )

        try:
            self._store.append_payment(record)
        except OSError as e:
            logger.error("failed to persist payment %s for %s: %s", record.id, agent_id, e)
        return record

    # ------------------------------------------------------------------ #
    # Public API -- Queries
    # ------------------------------------------------------------------ #

    def _confirmed(self, agent_id: str) -> List[PaymentRecord]:
        return [
            r for r in self._store.payments()
            if r.agent_id == agent_id and r.status is PaymentStatus.CONFIRMED
        ]

    def get_net_balance(self, agent_id: str) -> Decimal:
        """Sum of confirmed inbound minus sum of confirmed outbound."""
        balance = ZERO
        for r in self._confirmed(agent_id):
            if r.direction is PaymentDirection.INBOUND:
                balance += r.amount
            else:
                balance -= r.amount
        return balance

    def get_transaction_count(
        self, agent_id: str, direction: Optional[Union[str, PaymentDirection]] = None
    ) -> int:
        """Number of confirmed records, optionally for one direction."""
        records = self._confirmed(agent_id)
        if direction is None:
            return len(records)
        wanted = PaymentDirection(direction)
        return sum(1 for r in records if r.direction is wanted)

    def get_payment_history(self, agent_id: str, limit: int = 50) -> List[PaymentRecord]:
        """All of an agent's records (any status), most recent first.

        Raises:
            ValueError: if limit is negative.
        """
        if limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        records = [r for r in self._store.payments() if r.agent_id == agent_id]
        # stable sort keeps append order for equal timestamps; reverse for newest first
        records = list(reversed(records))
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]

    def get_total_earnings(self, agent_id: str) -> Decimal:
        return sum(
            (r.amount for r in self._confirmed(agent_id) if r.direction is PaymentDirection.INBOUND),
            ZERO,
        )

    def get_all_agent_earnings(self) -> Dict[str, Decimal]:
        """agent_id -> confirmed inbound total, for every agent that earned."""
        earnings: Dict[str, Decimal] = {}
        for r in self._store.payments():
            if r.direction is PaymentDirection.INBOUND and r.status is PaymentStatus.CONFIRMED:
                earnings[r.agent_id] = earnings.get(r.agent_id, ZERO) + r.amount
        return earnings

    def is_top_earner(self, agent_id: str, percent: float) -> bool:
        """True if the agent's earnings rank within the top *percent* of earners.

        At least one agent always fits in the top slice; agents that
        earned nothing never do.
        """
        earnings = self.get_all_agent_earnings()
        mine = earnings.get(agent_id, ZERO)
        if mine <= 0:
            return False
        slots = max(1, math.ceil(len(earnings) * percent / 100.0))
        ahead = sum(1 for other in earnings.values() if other > mine)
        return ahead < slots
