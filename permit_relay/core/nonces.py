"""Nonce discovery for both permit styles.

Allowance permits use an ordered per ``(owner, token, spender)`` nonce that
Permit2 returns from ``allowance``. Signature-transfer permits use any unset
bit of the owner's ``nonceBitmap``: nonce ``n`` lives in word ``n >> 8`` at
bit ``n & 0xff``.
"""

from __future__ import annotations

import functools
from typing import Optional

from web3 import Web3
from web3.contract import Contract

from permit_relay.contracts import load_contract_abi
from permit_relay.core.utils import ensure_web3_connected, get_logger

LOGGER = get_logger("permit_relay.nonces")

WORD_BITS = 256
FULL_WORD = 2**WORD_BITS - 1


@functools.lru_cache(maxsize=1)
def _permit2_abi() -> list:
    return load_contract_abi("permit2.json")


def permit2_contract(web3: Web3, permit2_address: str) -> Contract:
    ensure_web3_connected(web3)
    return web3.eth.contract(address=Web3.to_checksum_address(permit2_address), abi=_permit2_abi())


def first_unused_bit(bitmap: int) -> Optional[int]:
    """Index of the lowest unset bit of a 256-bit word, or ``None`` when full."""
    if bitmap >= FULL_WORD:
        return None
    inverted = ~bitmap & FULL_WORD
    return (inverted & -inverted).bit_length() - 1


def next_unordered_nonce(
    web3: Web3,
    permit2_address: str,
    owner: str,
    *,
    start_word: int = 0,
    max_words: int = 16,
) -> int:
    """Scan ``nonceBitmap`` words from ``start_word`` for the first unused nonce."""
    contract = permit2_contract(web3, permit2_address)
    owner = Web3.to_checksum_address(owner)
    for word in range(start_word, start_word + max_words):
        bitmap = contract.functions.nonceBitmap(owner, word).call()
        bit = first_unused_bit(bitmap)
        if bit is not None:
            nonce = (word << 8) | bit
            LOGGER.debug("Unordered nonce for %s: %s (word=%s bit=%s)", owner, nonce, word, bit)
            return nonce
    raise ValueError(f"No unused Permit2 nonce for {owner} in words {start_word}..{start_word + max_words - 1}")


def current_allowance_nonce(web3: Web3, permit2_address: str, owner: str, token: str, spender: str) -> int:
    """Nonce the next allowance permit for ``(owner, token, spender)`` must carry."""
    contract = permit2_contract(web3, permit2_address)
    _, _, nonce = contract.functions.allowance(
        Web3.to_checksum_address(owner),
        Web3.to_checksum_address(token),
        Web3.to_checksum_address(spender),
    ).call()
    return int(nonce)


__all__ = [
    "current_allowance_nonce",
    "first_unused_bit",
    "next_unordered_nonce",
    "permit2_contract",
]
