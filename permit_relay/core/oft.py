"""Bridge layer: LayerZero V2 style endpoint and Omnichain Fungible Token.

The validator only sees the :py:class:`BridgeLayer` interface of the token it
bridges: ``quote_send`` to price a message and a payable ``send`` that burns
the sender's tokens and hands a message to the endpoint.

Rules enforced here, matching the on-chain contracts:

- amounts are truncated to the token's shared decimals (dust stays with the
  sender) and the received amount must meet ``min_amount_ld``
- the attached native value must equal ``fee.native_fee`` exactly, and
  ``fee.native_fee`` must cover the endpoint quote; any excess over the quote
  is refunded to the refund address
- the sender must have approved the OFT for the amount being sent
- destinations need a configured peer and options granting ``lzReceive`` gas
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Protocol, Tuple

from web3 import Web3

from permit_relay.core.erc20 import ERC20Token
from permit_relay.core.errors import (
    InsufficientFee,
    InvalidOptions,
    LzTokenUnavailable,
    NoPeer,
    NotEnoughNative,
    SlippageExceeded,
)
from permit_relay.core.ledger import Ledger, LedgerContract
from permit_relay.core.options import TYPE_3, parse_executor_options
from permit_relay.core.types import MessagingFee, MessagingReceipt, OFTReceipt, OFTSent, SendParam
from permit_relay.core.utils import address_to_bytes32, get_logger, to_checksum

LOGGER = get_logger("permit_relay.oft")


class BridgeLayer(Protocol):
    """Bridge interface the validator is written against."""

    address: str

    def quote_send(self, send_param: SendParam, pay_in_lz_token: bool) -> MessagingFee:
        ...

    def send(
        self,
        caller: str,
        send_param: SendParam,
        fee: MessagingFee,
        refund_address: str,
        value: int = 0,
    ) -> Tuple[MessagingReceipt, OFTReceipt]:
        ...

    def approve(self, caller: str, spender: str, value: int) -> bool:
        ...

    def balance_of(self, account: str) -> int:
        ...


@dataclass(frozen=True)
class DestinationPricing:
    """Executor and DVN pricing of one destination endpoint."""

    base_fee: int
    gas_price: int
    per_byte_fee: int = 0


class Endpoint(LedgerContract):
    """Messaging endpoint of the local chain; collects fees and assigns GUIDs."""

    def __init__(self, ledger: Ledger, address: str, eid: int) -> None:
        super().__init__(ledger, address)
        self.eid = eid

    @property
    def _pricing(self) -> Dict[int, DestinationPricing]:
        return self._store.setdefault("pricing", {})

    @property
    def _outbound_nonces(self) -> Dict[Tuple[str, int, bytes], int]:
        return self._store.setdefault("outbound_nonces", {})

    def set_pricing(self, dst_eid: int, pricing: DestinationPricing) -> None:
        with self.ledger.transaction():
            self._pricing[dst_eid] = pricing

    def outbound_nonce(self, sender: str, dst_eid: int, receiver: bytes) -> int:
        return self._outbound_nonces.get((sender.lower(), dst_eid, receiver), 0)

    def quote(self, dst_eid: int, message: bytes, options: bytes, pay_in_lz_token: bool) -> MessagingFee:
        if pay_in_lz_token:
            raise LzTokenUnavailable()
        pricing = self._pricing.get(dst_eid)
        if pricing is None:
            raise NoPeer(dst_eid)
        executor = parse_executor_options(options)
        if executor.lz_receive_gas == 0:
            raise InvalidOptions(options)
        native_fee = (
            pricing.base_fee
            + executor.lz_receive_gas * pricing.gas_price
            + executor.lz_receive_value
            + sum(amount for amount, _ in executor.native_drops)
            + len(message) * pricing.per_byte_fee
        )
        return MessagingFee(native_fee=native_fee, lz_token_fee=0)

    def send(
        self,
        caller: str,
        dst_eid: int,
        receiver: bytes,
        message: bytes,
        options: bytes,
        fee: MessagingFee,
        refund_address: str,
    ) -> MessagingReceipt:
        """Accept a message from ``caller``; ``fee.native_fee`` must already sit with the caller."""
        with self.ledger.transaction():
            required = self.quote(dst_eid, message, options, fee.lz_token_fee > 0)
            if fee.native_fee < required.native_fee:
                raise InsufficientFee(required.native_fee, fee.native_fee)

            self.ledger.transfer_native(caller, self.address, fee.native_fee)
            self.ledger.transfer_native(self.address, refund_address, fee.native_fee - required.native_fee)

            key = (caller.lower(), dst_eid, receiver)
            nonce = self.outbound_nonce(caller, dst_eid, receiver) + 1
            self._outbound_nonces[key] = nonce
            guid = Web3.solidity_keccak(
                ["uint64", "uint32", "bytes32", "uint32", "bytes32"],
                [nonce, self.eid, address_to_bytes32(caller), dst_eid, receiver],
            )
        return MessagingReceipt(guid=bytes(guid), nonce=nonce, fee=required)


class OFTToken(ERC20Token):
    """Burn-and-mint omnichain token; the token contract is also the bridge entry point."""

    def __init__(
        self,
        ledger: Ledger,
        address: str,
        *,
        name: str,
        symbol: str,
        decimals: int,
        endpoint: Endpoint,
        shared_decimals: int = 6,
    ) -> None:
        super().__init__(ledger, address, name=name, symbol=symbol, decimals=decimals)
        if shared_decimals > decimals:
            raise ValueError("Shared decimals cannot exceed local decimals")
        self.endpoint = endpoint
        self.shared_decimals = shared_decimals
        self.decimal_conversion_rate = 10 ** (decimals - shared_decimals)

    @property
    def _peers(self) -> Dict[int, bytes]:
        return self._store.setdefault("peers", {})

    @property
    def _enforced_options(self) -> Dict[int, bytes]:
        return self._store.setdefault("enforced_options", {})

    def set_peer(self, eid: int, peer: bytes) -> None:
        with self.ledger.transaction():
            self._peers[eid] = peer

    def peer(self, eid: int) -> bytes:
        peer = self._peers.get(eid)
        if peer is None:
            raise NoPeer(eid)
        return peer

    def set_enforced_options(self, eid: int, options: bytes) -> None:
        parse_executor_options(options)
        with self.ledger.transaction():
            self._enforced_options[eid] = options

    def remove_dust(self, amount_ld: int) -> int:
        return (amount_ld // self.decimal_conversion_rate) * self.decimal_conversion_rate

    def combine_options(self, eid: int, extra_options: bytes) -> bytes:
        enforced = self._enforced_options.get(eid, b"")
        if not enforced:
            return extra_options
        if not extra_options:
            return enforced
        if len(extra_options) < 2 or int.from_bytes(extra_options[:2], "big") != TYPE_3:
            raise InvalidOptions(extra_options)
        return enforced + extra_options[2:]

    def _debit_view(self, amount_ld: int, min_amount_ld: int) -> OFTReceipt:
        amount_sent = self.remove_dust(amount_ld)
        amount_received = amount_sent
        if amount_received < min_amount_ld:
            raise SlippageExceeded(amount_received, min_amount_ld)
        return OFTReceipt(amount_sent_ld=amount_sent, amount_received_ld=amount_received)

    def _build_message(self, send_param: SendParam, amount_received_ld: int, sender: str) -> bytes:
        amount_sd = amount_received_ld // self.decimal_conversion_rate
        message = send_param.to + amount_sd.to_bytes(8, "big")
        if send_param.compose_msg:
            message += address_to_bytes32(sender) + send_param.compose_msg
        return message

    def quote_send(self, send_param: SendParam, pay_in_lz_token: bool = False) -> MessagingFee:
        self.peer(send_param.dst_eid)
        receipt = self._debit_view(send_param.amount_ld, send_param.min_amount_ld)
        message = self._build_message(send_param, receipt.amount_received_ld, self.address)
        options = self.combine_options(send_param.dst_eid, send_param.extra_options)
        return self.endpoint.quote(send_param.dst_eid, message, options, pay_in_lz_token)

    def send(
        self,
        caller: str,
        send_param: SendParam,
        fee: MessagingFee,
        refund_address: str,
        value: int = 0,
    ) -> Tuple[MessagingReceipt, OFTReceipt]:
        with self.ledger.transaction():
            self.ledger.transfer_native(caller, self.address, value)

            peer = self.peer(send_param.dst_eid)
            oft_receipt = self._debit_view(send_param.amount_ld, send_param.min_amount_ld)
            self._spend_allowance(caller, self.address, oft_receipt.amount_sent_ld)
            self._burn(caller, oft_receipt.amount_sent_ld)

            message = self._build_message(send_param, oft_receipt.amount_received_ld, caller)
            options = self.combine_options(send_param.dst_eid, send_param.extra_options)

            if value != fee.native_fee:
                raise NotEnoughNative(value)
            if fee.lz_token_fee:
                raise LzTokenUnavailable()

            receipt = self.endpoint.send(
                self.address,
                send_param.dst_eid,
                peer,
                message,
                options,
                fee,
                refund_address,
            )
            self._emit(
                OFTSent(
                    guid=receipt.guid,
                    dst_eid=send_param.dst_eid,
                    from_=to_checksum(caller),
                    amount_sent_ld=oft_receipt.amount_sent_ld,
                    amount_received_ld=oft_receipt.amount_received_ld,
                )
            )
        LOGGER.debug(
            "OFT send guid=0x%s dst_eid=%s amount=%s",
            receipt.guid.hex(),
            send_param.dst_eid,
            oft_receipt.amount_sent_ld,
        )
        return receipt, oft_receipt


__all__ = ["BridgeLayer", "DestinationPricing", "Endpoint", "OFTToken"]
