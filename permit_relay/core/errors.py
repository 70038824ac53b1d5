"""Revert types raised by ledger-resident contracts.

Every revert aborts the enclosing :py:meth:`Ledger.transaction` and rolls back
all state written during it. Reverts are never caught by the contracts
themselves; they surface to the caller unchanged.

The hierarchy mirrors where a call can fail:

- :py:class:`PreconditionError`: the validator's own argument checks, raised
  before any external call is made
- :py:class:`RegistryError`: Permit2 rejections (signature, nonce, deadline)
- :py:class:`BridgeError`: bridge-layer rejections (fee, options, slippage)
- :py:class:`TokenError`: ERC-20 balance and allowance failures
- :py:class:`LedgerError`: native currency accounting
"""

from __future__ import annotations

from typing import Any, Tuple


class ContractRevert(Exception):
    """A call reverted; ``args`` carry the custom error arguments."""

    def __init__(self, *args: Any) -> None:
        super().__init__(*args)
        self.revert_args: Tuple[Any, ...] = args

    def __str__(self) -> str:
        joined = ", ".join(repr(arg) for arg in self.revert_args)
        return f"{type(self).__name__}({joined})"


class PreconditionError(ContractRevert):
    """Local argument check failed before touching any collaborator."""


class InvalidRecipient(PreconditionError):
    pass


class InvalidAmount(PreconditionError):
    pass


class AmountExceedsPermit(PreconditionError):
    """Requested amount is above the signed permit bound."""


class InvalidToken(PreconditionError):
    pass


class InvalidSpender(PreconditionError):
    """Permit names a spender other than the validator."""


class InvalidDestination(PreconditionError):
    pass


class InsufficientBalance(PreconditionError):
    pass


class Unauthorized(PreconditionError):
    pass


class RegistryError(ContractRevert):
    """Rejected by the allowance registry."""


class SignatureExpired(RegistryError):
    pass


class InvalidSigner(RegistryError):
    pass


class InvalidSignatureLength(RegistryError):
    pass


class InvalidNonce(RegistryError):
    pass


class AllowanceExpired(RegistryError):
    pass


class InsufficientAllowance(RegistryError):
    pass


class InvalidPermitAmount(RegistryError):
    """Requested amount exceeds the permitted amount of a signature transfer."""


class ExcessiveInvalidation(RegistryError):
    pass


class BridgeError(ContractRevert):
    """Rejected by the bridge layer."""


class NotEnoughNative(BridgeError):
    pass


class InsufficientFee(BridgeError):
    pass


class SlippageExceeded(BridgeError):
    pass


class InvalidOptions(BridgeError):
    pass


class NoPeer(BridgeError):
    pass


class LzTokenUnavailable(BridgeError):
    pass


class TokenError(ContractRevert):
    """ERC-20 level failure."""


class ERC20InsufficientBalance(TokenError):
    pass


class ERC20InsufficientAllowance(TokenError):
    pass


class ERC20InvalidReceiver(TokenError):
    pass


class LedgerError(ContractRevert):
    pass


class InsufficientNativeBalance(LedgerError):
    pass


class NoContractCode(LedgerError):
    """Call targeted an address with no deployed contract."""


__all__ = [
    "AllowanceExpired",
    "AmountExceedsPermit",
    "BridgeError",
    "ContractRevert",
    "ERC20InsufficientAllowance",
    "ERC20InsufficientBalance",
    "ERC20InvalidReceiver",
    "ExcessiveInvalidation",
    "InsufficientAllowance",
    "InsufficientBalance",
    "InsufficientFee",
    "InsufficientNativeBalance",
    "InvalidAmount",
    "InvalidDestination",
    "InvalidNonce",
    "InvalidOptions",
    "InvalidPermitAmount",
    "InvalidRecipient",
    "InvalidSignatureLength",
    "InvalidSigner",
    "InvalidSpender",
    "InvalidToken",
    "LedgerError",
    "LzTokenUnavailable",
    "NoContractCode",
    "NoPeer",
    "NotEnoughNative",
    "PreconditionError",
    "RegistryError",
    "SignatureExpired",
    "SlippageExceeded",
    "TokenError",
    "Unauthorized",
]
