"""Token balance, allowance and registry approval helpers (web3 side)."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract

from permit_relay.core.utils import MAX_UINT160, ensure_web3_connected, get_logger

LOGGER = get_logger("permit_relay.tokens")

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}, {"name": "_spender", "type": "address"}],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [{"name": "_spender", "type": "address"}, {"name": "_value", "type": "uint256"}],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]


def get_contract(web3: Web3, token_address: str) -> Contract:
    """Return a cached ERC20 contract instance for ``token_address``."""
    ensure_web3_connected(web3)
    return _get_or_create_contract(web3, token_address)


_CONTRACT_CACHE: Dict[Tuple[int, str], Contract] = {}


def _get_or_create_contract(web3: Web3, token_address: str) -> Contract:
    checksum_address = Web3.to_checksum_address(token_address)
    key = (id(web3), checksum_address)
    contract = _CONTRACT_CACHE.get(key)
    if contract is None:
        contract = web3.eth.contract(address=checksum_address, abi=ERC20_ABI)
        _CONTRACT_CACHE[key] = contract
    return contract


def balance_of(web3: Web3, token_address: str, owner: str) -> int:
    """Fetch the ERC20 balance."""
    contract = get_contract(web3, token_address)
    return contract.functions.balanceOf(Web3.to_checksum_address(owner)).call()


def allowance_of(web3: Web3, token_address: str, owner: str, spender: str) -> int:
    """Fetch the ERC20 allowance."""
    contract = get_contract(web3, token_address)
    return contract.functions.allowance(
        Web3.to_checksum_address(owner),
        Web3.to_checksum_address(spender),
    ).call()


def decimals_of(web3: Web3, token_address: str) -> int:
    return get_contract(web3, token_address).functions.decimals().call()


def snapshot_balances(web3: Web3, token_addresses: Dict[str, str], owner: str) -> Dict[str, int]:
    """Return balances for token symbols keyed by symbol."""
    return {symbol: balance_of(web3, address, owner) for symbol, address in token_addresses.items()}


def approve_permit2(
    web3: Web3,
    account: LocalAccount,
    token_address: str,
    permit2_address: str,
    *,
    amount: int = MAX_UINT160,
) -> Optional[str]:
    """Approve the registry to pull ``token_address`` from ``account``.

    Skips the transaction when the current allowance is already at least half
    of ``amount``. Returns the transaction hash, or ``None`` when skipped.
    """
    current = allowance_of(web3, token_address, account.address, permit2_address)
    if current >= amount // 2:
        LOGGER.info("Permit2 already approved on %s (allowance=%s)", token_address, current)
        return None

    contract = get_contract(web3, token_address)
    tx = contract.functions.approve(Web3.to_checksum_address(permit2_address), amount).build_transaction(
        {
            "from": account.address,
            "nonce": web3.eth.get_transaction_count(account.address),
            "chainId": web3.eth.chain_id,
        }
    )
    signed = account.sign_transaction(tx)
    tx_hash = web3.eth.send_raw_transaction(signed.raw_transaction)
    LOGGER.info("Permit2 approval sent on %s: %s", token_address, tx_hash.hex())

    receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    if receipt["status"] != 1:
        raise ValueError(f"Permit2 approval reverted on {token_address} (tx {tx_hash.hex()})")
    return tx_hash.hex()


__all__ = [
    "ERC20_ABI",
    "allowance_of",
    "approve_permit2",
    "balance_of",
    "decimals_of",
    "get_contract",
    "snapshot_balances",
]
