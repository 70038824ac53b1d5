"""Allowance registry: the Permit2 collaborator of the validator.

Two capability sets are consumed by the validator:

- allowance transfer: ``permit`` records a signed, expiring allowance for
  ``(owner, token, spender)`` keyed by an ordered nonce, and ``transfer_from``
  spends it
- signature transfer: ``permit_transfer_from`` verifies a one-shot signature
  and moves tokens in the same call, consuming one bit of the owner's
  unordered nonce bitmap

:py:class:`Permit2` is a ledger-resident implementation with the error
semantics of the canonical deployment. Tokens are pulled with the token's
own ``transferFrom``, so owners must have approved the registry on the token
first (``scripts/approve_permit2.py``).
"""

from __future__ import annotations

from typing import Dict, Protocol, Tuple

from permit_relay.core import eip712
from permit_relay.core.erc20 import ERC20Token
from permit_relay.core.errors import (
    AllowanceExpired,
    ExcessiveInvalidation,
    InsufficientAllowance,
    InvalidNonce,
    InvalidPermitAmount,
    InvalidSignatureLength,
    InvalidSigner,
    SignatureExpired,
)
from permit_relay.core.ledger import Ledger, LedgerContract
from permit_relay.core.types import (
    PermitRecorded,
    PermitSingle,
    PermitTransferFrom,
    SignatureTransferDetails,
    UnorderedNonceInvalidation,
)
from permit_relay.core.utils import MAX_UINT160, get_logger, same_address, to_checksum

LOGGER = get_logger("permit_relay.registry")

#: Ordered nonces cannot be bumped by more than this in one invalidation
MAX_NONCE_JUMP = 2**16 - 1


class AllowanceRegistry(Protocol):
    """Registry interface the validator is written against."""

    address: str

    def permit(self, caller: str, owner: str, permit_single: PermitSingle, signature: bytes) -> None:
        ...

    def transfer_from(self, caller: str, from_: str, to: str, amount: int, token: str) -> None:
        ...

    def permit_transfer_from(
        self,
        caller: str,
        permit: PermitTransferFrom,
        transfer_details: SignatureTransferDetails,
        owner: str,
        signature: bytes,
    ) -> None:
        ...

    def allowance(self, owner: str, token: str, spender: str) -> Tuple[int, int, int]:
        ...

    def nonce_bitmap(self, owner: str, word: int) -> int:
        ...


def _k(*addresses: str) -> Tuple[str, ...]:
    return tuple(address.lower() for address in addresses)


class Permit2(LedgerContract):
    """Ledger-resident Permit2 (``AllowanceTransfer`` + ``SignatureTransfer``)."""

    def __init__(self, ledger: Ledger, address: str = eip712.PERMIT2_ADDRESS) -> None:
        super().__init__(ledger, address)

    @property
    def _allowances(self) -> Dict[Tuple[str, ...], Tuple[int, int, int]]:
        return self._store.setdefault("allowances", {})

    @property
    def _bitmaps(self) -> Dict[Tuple[str, int], int]:
        return self._store.setdefault("nonce_bitmaps", {})

    # Views

    def allowance(self, owner: str, token: str, spender: str) -> Tuple[int, int, int]:
        """Return ``(amount, expiration, nonce)``."""
        return self._allowances.get(_k(owner, token, spender), (0, 0, 0))

    def nonce_bitmap(self, owner: str, word: int) -> int:
        return self._bitmaps.get((owner.lower(), word), 0)

    def domain_separator(self) -> bytes:
        return eip712.domain_separator(self.ledger.chain_id, self.address)

    # Allowance transfer

    def permit(self, caller: str, owner: str, permit_single: PermitSingle, signature: bytes) -> None:
        with self.ledger.transaction():
            if self.ledger.timestamp > permit_single.sig_deadline:
                raise SignatureExpired(permit_single.sig_deadline)

            signer = self._recover(
                eip712.recover_permit_single_signer,
                permit_single,
                signature=signature,
                chain_id=self.ledger.chain_id,
                verifying_contract=self.address,
            )
            if not same_address(signer, owner):
                raise InvalidSigner(to_checksum(owner), signer)

            details = permit_single.details
            key = _k(owner, details.token, permit_single.spender)
            _, _, stored_nonce = self.allowance(owner, details.token, permit_single.spender)
            if stored_nonce != details.nonce:
                raise InvalidNonce(details.nonce)

            expiration = details.expiration or self.ledger.timestamp
            self._allowances[key] = (details.amount, expiration, stored_nonce + 1)
            self._emit(
                PermitRecorded(
                    owner=to_checksum(owner),
                    token=to_checksum(details.token),
                    spender=to_checksum(permit_single.spender),
                    amount=details.amount,
                    expiration=expiration,
                    nonce=details.nonce,
                )
            )
        LOGGER.debug("Permit recorded owner=%s token=%s spender=%s", owner, details.token, permit_single.spender)

    def transfer_from(self, caller: str, from_: str, to: str, amount: int, token: str) -> None:
        """Spend ``caller``'s allowance over ``from_``'s ``token``."""
        with self.ledger.transaction():
            key = _k(from_, token, caller)
            allowed_amount, expiration, nonce = self.allowance(from_, token, caller)
            if self.ledger.timestamp > expiration:
                raise AllowanceExpired(expiration)
            if allowed_amount != MAX_UINT160:
                if amount > allowed_amount:
                    raise InsufficientAllowance(allowed_amount)
                self._allowances[key] = (allowed_amount - amount, expiration, nonce)
            self._pull(token, from_, to, amount)

    def invalidate_nonces(self, caller: str, token: str, spender: str, new_nonce: int) -> None:
        """Bump ``caller``'s ordered nonce so outstanding permits for ``(token, spender)`` die."""
        with self.ledger.transaction():
            amount, expiration, old_nonce = self.allowance(caller, token, spender)
            if new_nonce <= old_nonce:
                raise InvalidNonce(new_nonce)
            if new_nonce - old_nonce > MAX_NONCE_JUMP:
                raise ExcessiveInvalidation(new_nonce)
            self._allowances[_k(caller, token, spender)] = (amount, expiration, new_nonce)

    # Signature transfer

    def permit_transfer_from(
        self,
        caller: str,
        permit: PermitTransferFrom,
        transfer_details: SignatureTransferDetails,
        owner: str,
        signature: bytes,
    ) -> None:
        with self.ledger.transaction():
            requested = transfer_details.requested_amount
            if self.ledger.timestamp > permit.deadline:
                raise SignatureExpired(permit.deadline)
            if requested > permit.permitted.amount:
                raise InvalidPermitAmount(permit.permitted.amount)

            self._use_unordered_nonce(owner, permit.nonce)

            signer = self._recover(
                eip712.recover_permit_transfer_from_signer,
                permit,
                spender=caller,
                signature=signature,
                chain_id=self.ledger.chain_id,
                verifying_contract=self.address,
            )
            if not same_address(signer, owner):
                raise InvalidSigner(to_checksum(owner), signer)

            self._pull(permit.permitted.token, owner, transfer_details.to, requested)

    def invalidate_unordered_nonces(self, caller: str, word: int, mask: int) -> None:
        with self.ledger.transaction():
            key = (caller.lower(), word)
            self._bitmaps[key] = self._bitmaps.get(key, 0) | mask
            self._emit(UnorderedNonceInvalidation(owner=to_checksum(caller), word=word, mask=mask))

    def _use_unordered_nonce(self, owner: str, nonce: int) -> None:
        word = nonce >> 8
        bit = 1 << (nonce & 0xFF)
        key = (owner.lower(), word)
        flipped = self._bitmaps.get(key, 0) ^ bit
        if flipped & bit == 0:
            raise InvalidNonce(nonce)
        self._bitmaps[key] = flipped

    # Internals

    @staticmethod
    def _recover(recover_fn, permit, **kwargs) -> str:
        signature = kwargs["signature"]
        if len(signature) not in (64, 65):
            raise InvalidSignatureLength(len(signature))
        try:
            return recover_fn(permit, **kwargs)
        except Exception as exc:  # eth_keys raises BadSignature for malformed r, s, v
            raise InvalidSigner(None, None) from exc

    def _pull(self, token: str, from_: str, to: str, amount: int) -> None:
        erc20: ERC20Token = self.ledger.contract_at(token, ERC20Token)
        erc20.transfer_from(self.address, from_, to, amount)


__all__ = ["AllowanceRegistry", "MAX_NONCE_JUMP", "Permit2"]
