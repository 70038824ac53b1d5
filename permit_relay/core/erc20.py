"""Ledger-resident ERC-20 token."""

from __future__ import annotations

from typing import Dict, Tuple

from permit_relay.core.errors import (
    ERC20InsufficientAllowance,
    ERC20InsufficientBalance,
    ERC20InvalidReceiver,
)
from permit_relay.core.ledger import Ledger, LedgerContract
from permit_relay.core.types import Approval, Transfer
from permit_relay.core.utils import ZERO_ADDRESS, is_zero_address, to_checksum

MAX_UINT256 = 2**256 - 1


def _k(address: str) -> str:
    return address.lower()


class ERC20Token(LedgerContract):
    """Minimal OpenZeppelin-flavoured ERC-20.

    Mutating methods take the calling address explicitly as ``caller``.
    An allowance of ``2**256 - 1`` is treated as infinite and never spent.
    """

    def __init__(self, ledger: Ledger, address: str, *, name: str, symbol: str, decimals: int = 18) -> None:
        super().__init__(ledger, address)
        self.name = name
        self.symbol = symbol
        self.decimals = decimals

    @property
    def _balances(self) -> Dict[str, int]:
        return self._store.setdefault("balances", {})

    @property
    def _allowances(self) -> Dict[Tuple[str, str], int]:
        return self._store.setdefault("allowances", {})

    def total_supply(self) -> int:
        return self._store.get("total_supply", 0)

    def balance_of(self, account: str) -> int:
        return self._balances.get(_k(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((_k(owner), _k(spender)), 0)

    def approve(self, caller: str, spender: str, value: int) -> bool:
        with self.ledger.transaction():
            self._approve(caller, spender, value)
        return True

    def transfer(self, caller: str, to: str, value: int) -> bool:
        with self.ledger.transaction():
            self._transfer(caller, to, value)
        return True

    def transfer_from(self, caller: str, from_: str, to: str, value: int) -> bool:
        with self.ledger.transaction():
            self._spend_allowance(from_, caller, value)
            self._transfer(from_, to, value)
        return True

    def mint(self, to: str, value: int) -> None:
        """Create ``value`` tokens for ``to``; deployment and test helper."""
        if is_zero_address(to):
            raise ERC20InvalidReceiver(ZERO_ADDRESS)
        with self.ledger.transaction():
            self._store["total_supply"] = self.total_supply() + value
            self._balances[_k(to)] = self.balance_of(to) + value
            self._emit(Transfer(from_=ZERO_ADDRESS, to=to_checksum(to), value=value))

    def _burn(self, from_: str, value: int) -> None:
        self._debit(from_, value)
        self._store["total_supply"] = self.total_supply() - value
        self._emit(Transfer(from_=to_checksum(from_), to=ZERO_ADDRESS, value=value))

    def _transfer(self, from_: str, to: str, value: int) -> None:
        if is_zero_address(to):
            raise ERC20InvalidReceiver(ZERO_ADDRESS)
        self._debit(from_, value)
        self._balances[_k(to)] = self.balance_of(to) + value
        self._emit(Transfer(from_=to_checksum(from_), to=to_checksum(to), value=value))

    def _debit(self, from_: str, value: int) -> None:
        balance = self.balance_of(from_)
        if balance < value:
            raise ERC20InsufficientBalance(to_checksum(from_), balance, value)
        self._balances[_k(from_)] = balance - value

    def _approve(self, owner: str, spender: str, value: int) -> None:
        self._allowances[(_k(owner), _k(spender))] = value
        self._emit(Approval(owner=to_checksum(owner), spender=to_checksum(spender), value=value))

    def _spend_allowance(self, owner: str, spender: str, value: int) -> None:
        current = self.allowance(owner, spender)
        if current == MAX_UINT256:
            return
        if current < value:
            raise ERC20InsufficientAllowance(to_checksum(spender), current, value)
        self._allowances[(_k(owner), _k(spender))] = current - value


__all__ = ["ERC20Token", "MAX_UINT256"]
