"""Utility helpers shared across permit relay core modules."""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

#: Largest value of a uint160 Permit2 allowance; never decremented by ``transferFrom``.
MAX_UINT160 = 2**160 - 1
MAX_UINT48 = 2**48 - 1


def get_logger(name: str = "permit_relay") -> logging.Logger:
    """Return a configured logger that prints to stdout."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def ensure_web3_connected(web3: Web3, *, expected_chain_id: Optional[int] = None) -> None:
    """Validate that ``web3`` is connected and optionally matches the expected chain id."""
    if not web3.is_connected():
        raise ConnectionError("Failed to connect to the configured RPC endpoint")
    if expected_chain_id is not None and web3.eth.chain_id != expected_chain_id:
        raise ValueError(f"RPC chain ID mismatch: expected {expected_chain_id}, got {web3.eth.chain_id}")


def hex_to_bytes(data: str) -> bytes:
    """Convert a hex string (with or without ``0x``) to bytes."""
    data = data[2:] if data.startswith("0x") else data
    return bytes.fromhex(data)


def to_checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def is_zero_address(address: Optional[str]) -> bool:
    """True for ``None``, empty strings and the all-zero address."""
    if not address:
        return True
    return int(address, 16) == 0


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def address_to_bytes32(address: str) -> bytes:
    """Left-pad a 20-byte EVM address to the 32-byte form used by cross-chain messages."""
    raw = hex_to_bytes(address)
    if len(raw) != 20:
        raise ValueError(f"Expected a 20-byte address, got {len(raw)} bytes: {address}")
    return b"\x00" * 12 + raw


def bytes32_to_address(value: bytes) -> str:
    if len(value) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(value)}")
    return Web3.to_checksum_address(value[12:])


def apply_slippage(value: int, slippage_bps: int) -> int:
    """Return ``value`` reduced by ``slippage_bps`` basis points, rounded down."""
    multiplier = Decimal(10_000 - slippage_bps) / Decimal(10_000)
    return int((Decimal(value) * multiplier).quantize(Decimal("1"), rounding=ROUND_DOWN))


def format_units(value: int, decimals: int) -> str:
    return f"{Decimal(value) / Decimal(10**decimals):.{decimals}f}"


__all__ = [
    "MAX_UINT160",
    "MAX_UINT48",
    "ZERO_ADDRESS",
    "address_to_bytes32",
    "apply_slippage",
    "bytes32_to_address",
    "ensure_web3_connected",
    "format_units",
    "get_logger",
    "hex_to_bytes",
    "is_zero_address",
    "same_address",
    "to_checksum",
]
