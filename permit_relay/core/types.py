"""Call-scoped structures passed between the validator, Permit2 and the bridge.

Field order follows the Solidity structs so the same values can be fed to
EIP-712 hashing and to ABI encoded contract calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from permit_relay.core.utils import bytes32_to_address


@dataclass(frozen=True)
class PermitDetails:
    """Token, bound and validity window of an allowance-style permit."""

    token: str
    amount: int  # uint160
    expiration: int  # uint48, 0 means "valid for this block only"
    nonce: int  # uint48


@dataclass(frozen=True)
class PermitSingle:
    """Allowance-style Permit2 authorization (``IAllowanceTransfer.PermitSingle``)."""

    style: ClassVar[str] = "allowance"

    details: PermitDetails
    spender: str
    sig_deadline: int

    @property
    def token(self) -> str:
        return self.details.token

    @property
    def amount(self) -> int:
        return self.details.amount

    def as_tuple(self) -> tuple:
        """ABI argument form: ``((token, amount, expiration, nonce), spender, sigDeadline)``."""
        details = self.details
        return (
            (details.token, details.amount, details.expiration, details.nonce),
            self.spender,
            self.sig_deadline,
        )


@dataclass(frozen=True)
class TokenPermissions:
    token: str
    amount: int


@dataclass(frozen=True)
class PermitTransferFrom:
    """One-shot signature-transfer authorization (``ISignatureTransfer.PermitTransferFrom``).

    The spender is not part of the struct; Permit2 hashes it in as the caller.
    """

    style: ClassVar[str] = "signature"

    permitted: TokenPermissions
    nonce: int
    deadline: int

    @property
    def token(self) -> str:
        return self.permitted.token

    @property
    def amount(self) -> int:
        return self.permitted.amount

    @property
    def word_position(self) -> int:
        return self.nonce >> 8

    @property
    def bit_position(self) -> int:
        return self.nonce & 0xFF

    def as_tuple(self) -> tuple:
        return ((self.permitted.token, self.permitted.amount), self.nonce, self.deadline)


@dataclass(frozen=True)
class SignatureTransferDetails:
    to: str
    requested_amount: int


@dataclass(frozen=True)
class SendParam:
    """Bridge send request for tokens the sender already holds."""

    dst_eid: int
    to: bytes  # 32 bytes, left padded destination address
    amount_ld: int
    min_amount_ld: int
    extra_options: bytes = b""
    compose_msg: bytes = b""
    oft_cmd: bytes = b""

    @property
    def to_address(self) -> str:
        return bytes32_to_address(self.to)

    def as_tuple(self) -> tuple:
        return (
            self.dst_eid,
            self.to,
            self.amount_ld,
            self.min_amount_ld,
            self.extra_options,
            self.compose_msg,
            self.oft_cmd,
        )


@dataclass(frozen=True)
class MessagingFee:
    native_fee: int
    lz_token_fee: int = 0


@dataclass(frozen=True)
class MessagingReceipt:
    guid: bytes
    nonce: int
    fee: MessagingFee


@dataclass(frozen=True)
class OFTReceipt:
    amount_sent_ld: int
    amount_received_ld: int


@dataclass(frozen=True)
class TransferOutcome:
    """Result shape shared by both permit styles."""

    owner: str
    token: str
    recipient: str
    amount: int


@dataclass(frozen=True)
class BridgeOutcome:
    transfer: TransferOutcome
    dst_eid: int
    dst_address: str
    receipt: MessagingReceipt
    oft_receipt: OFTReceipt

    @property
    def guid(self) -> bytes:
        return self.receipt.guid


# Events


@dataclass(frozen=True)
class PermitValidated:
    owner: str
    token: str
    spender: str
    amount: int


@dataclass(frozen=True)
class TokensTransferred:
    from_: str
    to: str
    token: str
    amount: int


@dataclass(frozen=True)
class BridgeInitiated:
    from_: str
    token: str
    dst_eid: int
    dst_address: str
    amount: int
    guid: bytes


@dataclass(frozen=True)
class Transfer:
    from_: str
    to: str
    value: int


@dataclass(frozen=True)
class Approval:
    owner: str
    spender: str
    value: int


@dataclass(frozen=True)
class PermitRecorded:
    """Permit2 ``Permit`` event."""

    owner: str
    token: str
    spender: str
    amount: int
    expiration: int
    nonce: int


@dataclass(frozen=True)
class UnorderedNonceInvalidation:
    owner: str
    word: int
    mask: int


@dataclass(frozen=True)
class OFTSent:
    guid: bytes
    dst_eid: int
    from_: str
    amount_sent_ld: int
    amount_received_ld: int


@dataclass(frozen=True)
class LogEntry:
    """One emitted event and the address that emitted it."""

    address: str
    event: object
    block_number: int


__all__ = [
    "Approval",
    "BridgeInitiated",
    "BridgeOutcome",
    "LogEntry",
    "MessagingFee",
    "MessagingReceipt",
    "OFTReceipt",
    "OFTSent",
    "PermitDetails",
    "PermitRecorded",
    "PermitSingle",
    "PermitTransferFrom",
    "PermitValidated",
    "SendParam",
    "SignatureTransferDetails",
    "TokenPermissions",
    "TokensTransferred",
    "Transfer",
    "TransferOutcome",
    "UnorderedNonceInvalidation",
]
