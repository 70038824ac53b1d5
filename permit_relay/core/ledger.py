"""Serialized in-process ledger hosting the validator and its collaborators.

The ledger reproduces the platform guarantees the validator is written
against:

- one transaction at a time, globally ordered (a re-entrant lock held for
  the whole top-level call)
- all-or-nothing execution: any exception raised inside
  :py:meth:`Ledger.transaction` restores contract storage, native balances
  and the event log to the state they had when the transaction began
- a block clock used for permit deadlines and expirations
- an append-only event log, the only durable audit surface

Contracts keep all of their mutable state in ``ledger.storage(address)`` so
that a snapshot of the ledger is a snapshot of every contract.

Example:

.. code-block:: python

    ledger = Ledger(chain_id=11155111)
    with ledger.transaction():
        token.mint(owner, 1_000_000)
"""

from __future__ import annotations

import copy
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type

from permit_relay.core.errors import InsufficientNativeBalance, NoContractCode
from permit_relay.core.types import LogEntry
from permit_relay.core.utils import get_logger, to_checksum

LOGGER = get_logger("permit_relay.ledger")


def _key(address: str) -> str:
    return address.lower()


class Ledger:
    """World state shared by all ledger-resident contracts."""

    def __init__(self, *, chain_id: int = 1, timestamp: Optional[int] = None) -> None:
        self.chain_id = chain_id
        self.timestamp = int(time.time()) if timestamp is None else int(timestamp)
        self.block_number = 1
        self._lock = threading.RLock()
        self._depth = 0
        self._storage: Dict[str, Dict[Any, Any]] = {}
        self._native: Dict[str, int] = {}
        self._logs: List[LogEntry] = []
        self._contracts: Dict[str, "LedgerContract"] = {}

    # Deployment

    def register(self, contract: "LedgerContract") -> None:
        if _key(contract.address) in self._contracts:
            raise ValueError(f"Address {contract.address} already has a contract")
        self._contracts[_key(contract.address)] = contract

    def contract_at(self, address: str, kind: Optional[Type[Any]] = None) -> Any:
        """Resolve a deployed contract, reverting like a call to an empty account would."""
        contract = self._contracts.get(_key(address))
        if contract is None or (kind is not None and not isinstance(contract, kind)):
            raise NoContractCode(address)
        return contract

    def has_code(self, address: str) -> bool:
        return _key(address) in self._contracts

    # Transactions

    @contextmanager
    def transaction(self) -> Iterator["Ledger"]:
        """Run the block atomically; nested blocks join the outer transaction."""
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
            else:
                snapshot = self._snapshot()
                self._depth = 1
                try:
                    yield self
                except BaseException as exc:
                    self._restore(snapshot)
                    LOGGER.debug("Transaction reverted at block %s: %s", self.block_number, exc)
                    raise
                else:
                    self.block_number += 1
                finally:
                    self._depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _snapshot(self) -> Tuple[Dict[str, Dict[Any, Any]], Dict[str, int], int]:
        return copy.deepcopy(self._storage), dict(self._native), len(self._logs)

    def _restore(self, snapshot: Tuple[Dict[str, Dict[Any, Any]], Dict[str, int], int]) -> None:
        storage, native, log_count = snapshot
        self._storage = storage
        self._native = native
        del self._logs[log_count:]

    # Contract storage

    def storage(self, address: str) -> Dict[Any, Any]:
        """Return the mutable storage mapping of the contract at ``address``."""
        return self._storage.setdefault(_key(address), {})

    # Native currency

    def balance(self, address: str) -> int:
        return self._native.get(_key(address), 0)

    def fund(self, address: str, amount: int) -> None:
        """Credit ``amount`` of native currency out of thin air (test and genesis helper)."""
        if amount < 0:
            raise ValueError("Cannot fund a negative amount")
        with self.transaction():
            self._native[_key(address)] = self.balance(address) + amount

    def transfer_native(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot transfer a negative amount")
        if amount == 0:
            return
        available = self.balance(sender)
        if available < amount:
            raise InsufficientNativeBalance(to_checksum(sender), available, amount)
        self._native[_key(sender)] = available - amount
        self._native[_key(recipient)] = self.balance(recipient) + amount

    # Events

    def emit(self, address: str, event: object) -> None:
        self._logs.append(LogEntry(address=to_checksum(address), event=event, block_number=self.block_number))

    @property
    def logs(self) -> Tuple[LogEntry, ...]:
        return tuple(self._logs)

    def events(self, event_type: Optional[Type[Any]] = None, *, address: Optional[str] = None) -> List[Any]:
        """Return emitted events, optionally filtered by type and emitting contract."""
        result = []
        for entry in self._logs:
            if event_type is not None and not isinstance(entry.event, event_type):
                continue
            if address is not None and _key(entry.address) != _key(address):
                continue
            result.append(entry.event)
        return result

    # Clock

    def advance_time(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Time only moves forward")
        with self._lock:
            self.timestamp += seconds
        return self.timestamp


class LedgerContract:
    """Base class for contracts whose state lives in a :py:class:`Ledger`."""

    def __init__(self, ledger: Ledger, address: str) -> None:
        self.ledger = ledger
        self.address = to_checksum(address)
        ledger.register(self)

    @property
    def _store(self) -> Dict[Any, Any]:
        return self.ledger.storage(self.address)

    def _emit(self, event: object) -> None:
        self.ledger.emit(self.address, event)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} at {self.address}>"


__all__ = ["Ledger", "LedgerContract"]
