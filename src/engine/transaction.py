"""
Explicit transaction and snapshot state for job execution.

A TransactionContext is passed into the execution driver instead of relying
on process-wide state. It answers the two questions the driver asks
("is a transaction open?", "is a snapshot active?") and tracks what a
procedure does when it commits on its own.

Rules:
- A snapshot can only be pushed inside a transaction
- commit() requires that no snapshot is still active
- commit_internal() (procedure COMMIT) ends the transaction, releases every
  active snapshot and immediately starts a new transaction without one
- Inside an atomic scope commit_internal() is invalid
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional

from .entities import utcnow
from .errors import InvariantViolation


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """A snapshot taken inside a specific transaction."""

    transaction_number: int
    taken_at: datetime


class TransactionContext:
    """
    Transaction/snapshot bookkeeping for one execution context.

    Args:
        clock: Source of "now"; the transaction start timestamp is read from it
        atomic: True when running inside a caller's explicit transaction
            block, where procedures may not commit
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        atomic: bool = False,
    ):
        self._clock = clock
        self._atomic_depth = 1 if atomic else 0
        self._transaction_number = 0
        self._transaction_start: Optional[datetime] = None
        self._snapshots: list[Snapshot] = []

        self.commits = 0
        self.rollbacks = 0
        # JobExecution of the last driver call made with this context
        self.execution = None

    # =========================================================================
    # Transactions
    # =========================================================================

    @property
    def in_transaction(self) -> bool:
        return self._transaction_start is not None

    @property
    def transaction_number(self) -> int:
        return self._transaction_number

    @property
    def transaction_start_timestamp(self) -> datetime:
        """Start time of the current transaction (the engine's "now")."""
        if self._transaction_start is None:
            raise InvariantViolation("no transaction is open")
        return self._transaction_start

    def begin(self) -> None:
        if self.in_transaction:
            raise InvariantViolation("a transaction is already open")
        self._transaction_number += 1
        self._transaction_start = self._clock()
        logger.debug(f"Started transaction {self._transaction_number}")

    def commit(self) -> None:
        if not self.in_transaction:
            raise InvariantViolation("cannot commit: no transaction is open")
        if self._snapshots:
            raise InvariantViolation(
                f"cannot commit transaction {self._transaction_number}: "
                f"{len(self._snapshots)} snapshot(s) still active"
            )
        self._transaction_start = None
        self.commits += 1
        logger.debug(f"Committed transaction {self._transaction_number}")

    def rollback(self) -> None:
        if not self.in_transaction:
            raise InvariantViolation("cannot roll back: no transaction is open")
        self._snapshots.clear()
        self._transaction_start = None
        self.rollbacks += 1
        logger.debug(f"Rolled back transaction {self._transaction_number}")

    def commit_internal(self) -> None:
        """
        Commit from inside a procedure and continue in a new transaction.

        Raises:
            InvariantViolation: Inside an atomic scope or with no open transaction
        """
        if self.is_atomic:
            raise InvariantViolation("invalid transaction termination")
        if not self.in_transaction:
            raise InvariantViolation("cannot commit: no transaction is open")

        self._snapshots.clear()
        self._transaction_start = None
        self.commits += 1
        logger.debug(f"Procedure committed transaction {self._transaction_number}")
        self.begin()

    # =========================================================================
    # Snapshots
    # =========================================================================

    @property
    def snapshot_active(self) -> bool:
        return bool(self._snapshots)

    @property
    def snapshot_depth(self) -> int:
        return len(self._snapshots)

    def push_snapshot(self) -> Snapshot:
        if not self.in_transaction:
            raise InvariantViolation("cannot take a snapshot outside a transaction")
        snapshot = Snapshot(self._transaction_number, self._clock())
        self._snapshots.append(snapshot)
        return snapshot

    def pop_snapshot(self) -> Snapshot:
        if not self._snapshots:
            raise InvariantViolation("no active snapshot to pop")
        return self._snapshots.pop()

    # =========================================================================
    # Atomicity
    # =========================================================================

    @property
    def is_atomic(self) -> bool:
        return self._atomic_depth > 0

    @contextmanager
    def atomic_scope(self) -> Iterator["TransactionContext"]:
        """Run a block in which procedures may not commit."""
        self._atomic_depth += 1
        try:
            yield self
        finally:
            self._atomic_depth -= 1
