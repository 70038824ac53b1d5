"""Validation helpers for permit transfers and bridge sends.

The ``check_*`` functions are the validator's local preconditions; they raise
:py:class:`~permit_relay.core.errors.PreconditionError` subclasses and never
touch a collaborator. The relayer reuses them as a preflight so a doomed call
is refused before any gas is spent, and adds the web3 side checks
(owner balance, registry approval, native funding).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from permit_relay.core.errors import (
    AmountExceedsPermit,
    InvalidAmount,
    InvalidDestination,
    InvalidRecipient,
    InvalidSpender,
    InvalidToken,
)
from permit_relay.core.tokens import allowance_of, balance_of
from permit_relay.core.types import PermitSingle, PermitTransferFrom
from permit_relay.core.utils import get_logger, is_zero_address, same_address

LOGGER = get_logger("permit_relay.validation")


def check_recipient(recipient: Optional[str], validator_address: str) -> None:
    if is_zero_address(recipient) or same_address(recipient, validator_address):
        raise InvalidRecipient(recipient)


def check_amount(amount: int, bound: int) -> None:
    if amount <= 0:
        raise InvalidAmount(amount)
    if amount > bound:
        raise AmountExceedsPermit(amount, bound)


def check_token(token: Optional[str]) -> None:
    if is_zero_address(token):
        raise InvalidToken(token)


def check_spender(spender: str, validator_address: str) -> None:
    if not same_address(spender, validator_address):
        raise InvalidSpender(spender, validator_address)


def check_destination(dst_address: Optional[str]) -> None:
    if is_zero_address(dst_address):
        raise InvalidDestination(dst_address)


def validate_permit_scope(permit_single: PermitSingle, validator_address: str) -> None:
    """Token and spender checks shared by every allowance-style entry point."""
    check_token(permit_single.details.token)
    check_spender(permit_single.spender, validator_address)


def validate_transfer_request(
    permit_single: PermitSingle,
    validator_address: str,
    *,
    recipient: Optional[str],
    amount: int,
) -> None:
    """Checks of ``validatePermitAndTransfer`` in their on-chain order.

    ``recipient=None`` skips the recipient check for flows that deliver to the
    validator itself.
    """
    if recipient is not None:
        check_recipient(recipient, validator_address)
    check_amount(amount, permit_single.details.amount)
    validate_permit_scope(permit_single, validator_address)


def validate_signature_transfer(permit: PermitTransferFrom, dst_address: str) -> None:
    check_token(permit.permitted.token)
    if permit.permitted.amount <= 0:
        raise InvalidAmount(permit.permitted.amount)
    check_destination(dst_address)


@dataclass(frozen=True)
class TokenValidationResult:
    """Owner balance and registry approval context for a permit."""

    token_address: str
    owner: str
    required_amount: int
    balance: int
    registry_allowance: int

    @property
    def has_balance(self) -> bool:
        return self.balance >= self.required_amount

    @property
    def has_allowance(self) -> bool:
        return self.registry_allowance >= self.required_amount


def validate_owner_funds(
    *,
    web3: Web3,
    token_address: str,
    owner: str,
    permit2_address: str,
    amount: int,
) -> TokenValidationResult:
    """Check the owner holds ``amount`` and has approved the registry on the token."""
    balance = balance_of(web3, token_address, owner)
    allowance = allowance_of(web3, token_address, owner, permit2_address)
    checksum_address = Web3.to_checksum_address(token_address)

    if balance < amount:
        raise ValueError(f"Owner balance for {checksum_address} is {balance}, but the permit requires {amount}")
    if allowance < amount:
        LOGGER.warning(
            "Owner %s has approved only %s of %s to Permit2 (needs %s)",
            owner,
            allowance,
            checksum_address,
            amount,
        )

    return TokenValidationResult(
        token_address=checksum_address,
        owner=Web3.to_checksum_address(owner),
        required_amount=amount,
        balance=balance,
        registry_allowance=allowance,
    )


@dataclass(frozen=True)
class NativeFundingResult:
    """Outcome of relayer native balance preflight."""

    native_balance: int
    required_native: int
    has_sufficient_native: bool


def validate_native_funding(*, native_balance: int, native_value: int, gas_reserve: int = 10**15) -> NativeFundingResult:
    """Check the relayer can pay the bridge fee plus a gas reserve."""
    required_native = native_value + gas_reserve
    has_balance = native_balance >= required_native
    if not has_balance:
        LOGGER.warning(
            "Low native balance %.6f ETH, requires at least %.6f ETH",
            native_balance / 10**18,
            required_native / 10**18,
        )
    return NativeFundingResult(
        native_balance=native_balance,
        required_native=required_native,
        has_sufficient_native=has_balance,
    )


__all__ = [
    "NativeFundingResult",
    "TokenValidationResult",
    "check_amount",
    "check_destination",
    "check_recipient",
    "check_spender",
    "check_token",
    "validate_native_funding",
    "validate_owner_funds",
    "validate_permit_scope",
    "validate_signature_transfer",
    "validate_transfer_request",
]
