"""Permit2 transfer validator and bridge relay.

The validator gates every token movement on a Permit2 authorization naming
it as spender, then optionally forwards the received tokens into the OFT
bridge in the same transaction.

Entry points (Solidity names in brackets):

==============================  ==============================================
``validate_permit``             [validatePermit] register the permit only
``validate_permit_and_transfer`` [validatePermitAndTransfer] permit, then
                                pull ``amount`` to ``recipient``
``receive_tokens_with_permit``  [receiveTokensWithPermit] as above, recipient
                                is the validator
``receive_and_bridge``          [receiveAndBridge] allowance permit, pull to
                                the validator, approve, ``send``
``receive_and_bridge_gasless``  [receiveAndBridgeGasless] one-shot signature
                                transfer to the validator, approve, ``send``
``quote_bridge``                [quoteBridge] native fee of a matching send
``withdraw``                    [withdraw] approve tokens held by the validator
==============================  ==============================================

Each entry point runs in one ledger transaction. Local checks run before the
first registry call. Registry and bridge reverts are not caught: they unwind
the whole call, including transfers already made in it.

The allowance-style flows call ``permit`` and ``transferFrom`` back to back,
so the allowance granted by the permit is spent before the call returns and
nothing is left standing beyond the unrequested part of the bound.
"""

from __future__ import annotations

import functools
from typing import Callable, TypeVar

from permit_relay.core.erc20 import ERC20Token
from permit_relay.core.errors import ContractRevert, InsufficientBalance, InvalidAmount, InvalidRecipient, Unauthorized
from permit_relay.core.ledger import Ledger, LedgerContract
from permit_relay.core.oft import BridgeLayer, OFTToken
from permit_relay.core.registry import AllowanceRegistry
from permit_relay.core.types import (
    BridgeInitiated,
    BridgeOutcome,
    MessagingFee,
    PermitSingle,
    PermitTransferFrom,
    PermitValidated,
    SendParam,
    SignatureTransferDetails,
    TokensTransferred,
    TransferOutcome,
)
from permit_relay.core.utils import address_to_bytes32, get_logger, is_zero_address, same_address, to_checksum
from permit_relay.core.validation import (
    check_destination,
    check_token,
    validate_permit_scope,
    validate_signature_transfer,
    validate_transfer_request,
)

LOGGER = get_logger("permit_relay.validator")

T = TypeVar("T")


def entry_point(name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Run the decorated method as one atomic transaction and log its outcome."""

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def wrapper(self: "Permit2TransferValidator", caller: str, *args, **kwargs) -> T:
            try:
                with self.ledger.transaction():
                    result = fn(self, caller, *args, **kwargs)
            except ContractRevert as exc:
                LOGGER.warning("%s reverted for caller %s: %s", name, caller, exc)
                raise
            LOGGER.info("%s succeeded for caller %s", name, caller)
            return result

        return wrapper

    return decorator


class Permit2TransferValidator(LedgerContract):
    """Validates Permit2 authorizations and relays the funds into the bridge."""

    def __init__(self, ledger: Ledger, address: str, registry: AllowanceRegistry) -> None:
        super().__init__(ledger, address)
        self.registry = registry

    # Allowance-style permits

    @entry_point("validatePermit")
    def validate_permit(self, caller: str, permit_single: PermitSingle, signature: bytes, owner: str) -> TransferOutcome:
        validate_permit_scope(permit_single, self.address)
        self.registry.permit(self.address, owner, permit_single, signature)

        details = permit_single.details
        self._emit(
            PermitValidated(
                owner=to_checksum(owner),
                token=to_checksum(details.token),
                spender=self.address,
                amount=details.amount,
            )
        )
        return TransferOutcome(owner=to_checksum(owner), token=to_checksum(details.token), recipient=self.address, amount=0)

    @entry_point("validatePermitAndTransfer")
    def validate_permit_and_transfer(
        self,
        caller: str,
        permit_single: PermitSingle,
        signature: bytes,
        owner: str,
        recipient: str,
        amount: int,
    ) -> TransferOutcome:
        validate_transfer_request(permit_single, self.address, recipient=recipient, amount=amount)
        return self._permit_and_pull(permit_single, signature, owner, recipient, amount)

    @entry_point("receiveTokensWithPermit")
    def receive_tokens_with_permit(
        self,
        caller: str,
        permit_single: PermitSingle,
        signature: bytes,
        owner: str,
        amount: int,
    ) -> TransferOutcome:
        validate_transfer_request(permit_single, self.address, recipient=None, amount=amount)
        return self._permit_and_pull(permit_single, signature, owner, self.address, amount)

    @entry_point("receiveAndBridge")
    def receive_and_bridge(
        self,
        caller: str,
        permit_single: PermitSingle,
        signature: bytes,
        owner: str,
        amount: int,
        dst_eid: int,
        dst_address: str,
        min_amount_ld: int,
        extra_options: bytes,
        value: int = 0,
    ) -> BridgeOutcome:
        self.ledger.transfer_native(caller, self.address, value)
        validate_transfer_request(permit_single, self.address, recipient=None, amount=amount)
        check_destination(dst_address)

        transfer = self._permit_and_pull(permit_single, signature, owner, self.address, amount)
        return self._bridge(caller, transfer, dst_eid, dst_address, min_amount_ld, extra_options, value)

    # Signature-transfer permits

    @entry_point("receiveAndBridgeGasless")
    def receive_and_bridge_gasless(
        self,
        caller: str,
        permit: PermitTransferFrom,
        owner: str,
        signature: bytes,
        dst_eid: int,
        dst_address: str,
        min_amount_ld: int,
        extra_options: bytes,
        value: int = 0,
    ) -> BridgeOutcome:
        self.ledger.transfer_native(caller, self.address, value)
        validate_signature_transfer(permit, dst_address)

        token = permit.permitted.token
        amount = permit.permitted.amount
        self.registry.permit_transfer_from(
            self.address,
            permit,
            SignatureTransferDetails(to=self.address, requested_amount=amount),
            owner,
            signature,
        )
        transfer = self._record_transfer(owner, self.address, token, amount)
        return self._bridge(caller, transfer, dst_eid, dst_address, min_amount_ld, extra_options, value)

    # Views

    def quote_bridge(
        self,
        token: str,
        dst_eid: int,
        dst_address: str,
        amount: int,
        min_amount_ld: int,
        extra_options: bytes,
    ) -> int:
        """Native fee a ``send`` with exactly these parameters would require."""
        check_token(token)
        send_param = self._send_param(dst_eid, dst_address, amount, min_amount_ld, extra_options)
        fee = self._bridge_for(token).quote_send(send_param, False)
        return fee.native_fee

    # Cleanup

    @entry_point("withdraw")
    def withdraw(self, caller: str, token: str, to: str, amount: int) -> None:
        """Approve ``to`` for ``amount`` of the validator's ``token`` balance.

        Only grants an approval; ``to`` has to pull the tokens itself.

        Any caller may approve itself (``to == caller``) over the whole
        balance. There is no owner role to restrict this yet.
        """
        if amount < 0:
            raise InvalidAmount(amount)
        if not (same_address(caller, self.address) or same_address(to, caller)):
            raise Unauthorized(to_checksum(caller))
        if is_zero_address(to):
            raise InvalidRecipient(to)

        erc20: ERC20Token = self.ledger.contract_at(token, ERC20Token)
        balance = erc20.balance_of(self.address)
        if balance < amount:
            raise InsufficientBalance(balance, amount)
        erc20.approve(self.address, to, amount)

    # Internals

    def _permit_and_pull(
        self,
        permit_single: PermitSingle,
        signature: bytes,
        owner: str,
        recipient: str,
        amount: int,
    ) -> TransferOutcome:
        token = permit_single.details.token
        self.registry.permit(self.address, owner, permit_single, signature)
        self.registry.transfer_from(self.address, owner, recipient, amount, token)
        return self._record_transfer(owner, recipient, token, amount)

    def _record_transfer(self, owner: str, recipient: str, token: str, amount: int) -> TransferOutcome:
        outcome = TransferOutcome(
            owner=to_checksum(owner),
            token=to_checksum(token),
            recipient=to_checksum(recipient),
            amount=amount,
        )
        self._emit(TokensTransferred(from_=outcome.owner, to=outcome.recipient, token=outcome.token, amount=amount))
        return outcome

    def _send_param(
        self,
        dst_eid: int,
        dst_address: str,
        amount: int,
        min_amount_ld: int,
        extra_options: bytes,
    ) -> SendParam:
        return SendParam(
            dst_eid=dst_eid,
            to=address_to_bytes32(dst_address),
            amount_ld=amount,
            min_amount_ld=min_amount_ld,
            extra_options=extra_options,
            compose_msg=b"",
            oft_cmd=b"",
        )

    def _bridge_for(self, token: str) -> BridgeLayer:
        return self.ledger.contract_at(token, OFTToken)

    def _bridge(
        self,
        caller: str,
        transfer: TransferOutcome,
        dst_eid: int,
        dst_address: str,
        min_amount_ld: int,
        extra_options: bytes,
        value: int,
    ) -> BridgeOutcome:
        """Spend tokens already held by the validator on a bridge send.

        The approval must land before ``send``; the bridge spends it from the
        validator's own balance. ``BridgeInitiated`` carries the amount
        actually sent; dust below the shared decimals stays with the
        validator along with its unspent approval.
        """
        bridge = self._bridge_for(transfer.token)
        bridge.approve(self.address, bridge.address, transfer.amount)

        send_param = self._send_param(dst_eid, dst_address, transfer.amount, min_amount_ld, extra_options)
        receipt, oft_receipt = bridge.send(
            self.address,
            send_param,
            MessagingFee(native_fee=value, lz_token_fee=0),
            caller,
            value=value,
        )

        self._emit(
            BridgeInitiated(
                from_=transfer.owner,
                token=transfer.token,
                dst_eid=dst_eid,
                dst_address=to_checksum(dst_address),
                amount=oft_receipt.amount_sent_ld,
                guid=receipt.guid,
            )
        )
        LOGGER.info(
            "Bridged %s of %s from %s to eid=%s address=%s guid=0x%s",
            oft_receipt.amount_sent_ld,
            transfer.token,
            transfer.owner,
            dst_eid,
            dst_address,
            receipt.guid.hex(),
        )
        return BridgeOutcome(
            transfer=transfer,
            dst_eid=dst_eid,
            dst_address=to_checksum(dst_address),
            receipt=receipt,
            oft_receipt=oft_receipt,
        )


__all__ = ["Permit2TransferValidator", "entry_point"]
