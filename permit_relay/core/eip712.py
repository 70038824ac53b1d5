"""EIP-712 typed data for Permit2 allowance and signature-transfer permits.

Both permit styles are signed against the same domain::

    EIP712Domain(string name,uint256 chainId,address verifyingContract)

with ``name = "Permit2"`` and the registry address as verifying contract.

IMPORTANT: field order in the type definitions must match the Solidity
struct order, not alphabetical order, or Permit2 recovers a different signer.

:py:func:`hash_permit_single` and :py:func:`hash_permit_transfer_from` build
the digest by hand with ``eth_abi`` the way the registry rebuilds it;
signing and recovery go through ``eth_account.messages.encode_typed_data``.
"""

from __future__ import annotations

from typing import Any, Dict

from eth_abi import encode
from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from web3 import Web3

from permit_relay.core.types import PermitSingle, PermitTransferFrom
from permit_relay.core.utils import to_checksum

#: Canonical Permit2 deployment, same address on every EVM chain (CREATE2)
PERMIT2_ADDRESS = "0x000000000022D473030F116dDEE9F6B43aC78BA3"

PERMIT2_DOMAIN_NAME = "Permit2"

_DOMAIN_TYPEHASH = Web3.keccak(text="EIP712Domain(string name,uint256 chainId,address verifyingContract)")

_PERMIT_DETAILS_TYPEHASH = Web3.keccak(
    text="PermitDetails(address token,uint160 amount,uint48 expiration,uint48 nonce)"
)

_PERMIT_SINGLE_TYPEHASH = Web3.keccak(
    text="PermitSingle(PermitDetails details,address spender,uint256 sigDeadline)"
    "PermitDetails(address token,uint160 amount,uint48 expiration,uint48 nonce)"
)

_TOKEN_PERMISSIONS_TYPEHASH = Web3.keccak(text="TokenPermissions(address token,uint256 amount)")

_PERMIT_TRANSFER_FROM_TYPEHASH = Web3.keccak(
    text="PermitTransferFrom(TokenPermissions permitted,address spender,uint256 nonce,uint256 deadline)"
    "TokenPermissions(address token,uint256 amount)"
)

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

PERMIT_DETAILS_TYPE = [
    {"name": "token", "type": "address"},
    {"name": "amount", "type": "uint160"},
    {"name": "expiration", "type": "uint48"},
    {"name": "nonce", "type": "uint48"},
]

PERMIT_SINGLE_TYPE = [
    {"name": "details", "type": "PermitDetails"},
    {"name": "spender", "type": "address"},
    {"name": "sigDeadline", "type": "uint256"},
]

TOKEN_PERMISSIONS_TYPE = [
    {"name": "token", "type": "address"},
    {"name": "amount", "type": "uint256"},
]

PERMIT_TRANSFER_FROM_TYPE = [
    {"name": "permitted", "type": "TokenPermissions"},
    {"name": "spender", "type": "address"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


def domain_separator(chain_id: int, verifying_contract: str = PERMIT2_ADDRESS) -> bytes:
    return Web3.keccak(
        encode(
            ["bytes32", "bytes32", "uint256", "address"],
            [
                _DOMAIN_TYPEHASH,
                Web3.keccak(text=PERMIT2_DOMAIN_NAME),
                chain_id,
                to_checksum(verifying_contract),
            ],
        )
    )


def _domain(chain_id: int, verifying_contract: str) -> Dict[str, Any]:
    return {
        "name": PERMIT2_DOMAIN_NAME,
        "chainId": chain_id,
        "verifyingContract": to_checksum(verifying_contract),
    }


def build_permit_single_typed_data(
    permit: PermitSingle,
    chain_id: int,
    verifying_contract: str = PERMIT2_ADDRESS,
) -> Dict[str, Any]:
    """Compose the EIP-712 structured data dict for an allowance permit."""
    details = permit.details
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "PermitDetails": PERMIT_DETAILS_TYPE,
            "PermitSingle": PERMIT_SINGLE_TYPE,
        },
        "domain": _domain(chain_id, verifying_contract),
        "primaryType": "PermitSingle",
        "message": {
            "details": {
                "token": to_checksum(details.token),
                "amount": details.amount,
                "expiration": details.expiration,
                "nonce": details.nonce,
            },
            "spender": to_checksum(permit.spender),
            "sigDeadline": permit.sig_deadline,
        },
    }


def build_permit_transfer_from_typed_data(
    permit: PermitTransferFrom,
    spender: str,
    chain_id: int,
    verifying_contract: str = PERMIT2_ADDRESS,
) -> Dict[str, Any]:
    """Compose the EIP-712 structured data dict for a signature-transfer permit.

    ``spender`` is the contract that will call ``permitTransferFrom``.
    """
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "TokenPermissions": TOKEN_PERMISSIONS_TYPE,
            "PermitTransferFrom": PERMIT_TRANSFER_FROM_TYPE,
        },
        "domain": _domain(chain_id, verifying_contract),
        "primaryType": "PermitTransferFrom",
        "message": {
            "permitted": {
                "token": to_checksum(permit.permitted.token),
                "amount": permit.permitted.amount,
            },
            "spender": to_checksum(spender),
            "nonce": permit.nonce,
            "deadline": permit.deadline,
        },
    }


def hash_permit_single(permit: PermitSingle, chain_id: int, verifying_contract: str = PERMIT2_ADDRESS) -> bytes:
    """EIP-712 digest of a ``PermitSingle``, as rebuilt by the registry."""
    details = permit.details
    details_hash = Web3.keccak(
        encode(
            ["bytes32", "address", "uint160", "uint48", "uint48"],
            [
                _PERMIT_DETAILS_TYPEHASH,
                to_checksum(details.token),
                details.amount,
                details.expiration,
                details.nonce,
            ],
        )
    )
    struct_hash = Web3.keccak(
        encode(
            ["bytes32", "bytes32", "address", "uint256"],
            [_PERMIT_SINGLE_TYPEHASH, details_hash, to_checksum(permit.spender), permit.sig_deadline],
        )
    )
    return Web3.keccak(b"\x19\x01" + domain_separator(chain_id, verifying_contract) + struct_hash)


def hash_permit_transfer_from(
    permit: PermitTransferFrom,
    spender: str,
    chain_id: int,
    verifying_contract: str = PERMIT2_ADDRESS,
) -> bytes:
    """EIP-712 digest of a ``PermitTransferFrom`` with ``spender`` hashed in."""
    permissions_hash = Web3.keccak(
        encode(
            ["bytes32", "address", "uint256"],
            [_TOKEN_PERMISSIONS_TYPEHASH, to_checksum(permit.permitted.token), permit.permitted.amount],
        )
    )
    struct_hash = Web3.keccak(
        encode(
            ["bytes32", "bytes32", "address", "uint256", "uint256"],
            [_PERMIT_TRANSFER_FROM_TYPEHASH, permissions_hash, to_checksum(spender), permit.nonce, permit.deadline],
        )
    )
    return Web3.keccak(b"\x19\x01" + domain_separator(chain_id, verifying_contract) + struct_hash)


def normalize_signature(signature: bytes) -> bytes:
    """Return a 65-byte ``r || s || v`` signature.

    64-byte EIP-2098 compact signatures are expanded; any other length raises
    ``ValueError``.
    """
    if len(signature) == 65:
        return bytes(signature)
    if len(signature) == 64:
        r = signature[:32]
        vs = int.from_bytes(signature[32:], "big")
        s = vs & ((1 << 255) - 1)
        v = (vs >> 255) + 27
        return r + s.to_bytes(32, "big") + bytes([v])
    raise ValueError(f"Invalid signature length {len(signature)}")


def _signable(typed_data: Dict[str, Any]) -> SignableMessage:
    return encode_typed_data(full_message=typed_data)


def sign_permit_single(
    permit: PermitSingle,
    private_key: str,
    chain_id: int,
    verifying_contract: str = PERMIT2_ADDRESS,
) -> bytes:
    signed = Account.sign_message(
        _signable(build_permit_single_typed_data(permit, chain_id, verifying_contract)),
        private_key=private_key,
    )
    return bytes(signed.signature)


def sign_permit_transfer_from(
    permit: PermitTransferFrom,
    spender: str,
    private_key: str,
    chain_id: int,
    verifying_contract: str = PERMIT2_ADDRESS,
) -> bytes:
    signed = Account.sign_message(
        _signable(build_permit_transfer_from_typed_data(permit, spender, chain_id, verifying_contract)),
        private_key=private_key,
    )
    return bytes(signed.signature)


def recover_permit_single_signer(
    permit: PermitSingle,
    signature: bytes,
    chain_id: int,
    verifying_contract: str = PERMIT2_ADDRESS,
) -> str:
    signable = _signable(build_permit_single_typed_data(permit, chain_id, verifying_contract))
    return Account.recover_message(signable, signature=normalize_signature(signature))


def recover_permit_transfer_from_signer(
    permit: PermitTransferFrom,
    spender: str,
    signature: bytes,
    chain_id: int,
    verifying_contract: str = PERMIT2_ADDRESS,
) -> str:
    signable = _signable(build_permit_transfer_from_typed_data(permit, spender, chain_id, verifying_contract))
    return Account.recover_message(signable, signature=normalize_signature(signature))


__all__ = [
    "PERMIT2_ADDRESS",
    "PERMIT2_DOMAIN_NAME",
    "build_permit_single_typed_data",
    "build_permit_transfer_from_typed_data",
    "domain_separator",
    "hash_permit_single",
    "hash_permit_transfer_from",
    "normalize_signature",
    "recover_permit_single_signer",
    "recover_permit_transfer_from_signer",
    "sign_permit_single",
    "sign_permit_transfer_from",
]
