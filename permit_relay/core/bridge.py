"""Validator call construction for the relayer.

A plan bundles everything needed to submit one validator call: the owner's
signed permit, the ABI arguments in declaration order and the native value
to attach. Plans are built off-chain and checked against the same local
preconditions the validator enforces, so a call that would revert on a
precondition is refused before any gas is spent.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from eth_account import Account
from web3 import Web3
from web3.contract import Contract

from permit_relay.config import RelayerConfig
from permit_relay.contracts import load_contract_abi
from permit_relay.core import eip712
from permit_relay.core.nonces import current_allowance_nonce, next_unordered_nonce
from permit_relay.core.options import build_lz_receive_options
from permit_relay.core.types import PermitDetails, PermitSingle, PermitTransferFrom, TokenPermissions
from permit_relay.core.utils import (
    MAX_UINT48,
    apply_slippage,
    ensure_web3_connected,
    get_logger,
)
from permit_relay.core.validation import (
    check_destination,
    validate_owner_funds,
    validate_signature_transfer,
    validate_transfer_request,
)

LOGGER = get_logger("permit_relay.bridge")


@dataclass(frozen=True)
class RelayPlan:
    """Prepared arguments for one validator entry point."""

    function_name: str
    args: Tuple[Any, ...]
    native_value: int
    owner: str
    token: str
    amount: int
    nonce: int
    deadline: int
    signature: bytes
    dst_eid: Optional[int] = None
    dst_address: Optional[str] = None
    min_amount_ld: Optional[int] = None
    extra_options: bytes = b""


@functools.lru_cache(maxsize=None)
def _abi(filename: str) -> list:
    return load_contract_abi(filename)


def validator_contract(web3: Web3, validator_address: str) -> Contract:
    return web3.eth.contract(
        address=Web3.to_checksum_address(validator_address),
        abi=_abi("permit2_validator.json"),
    )


def oft_contract(web3: Web3, token_address: str) -> Contract:
    return web3.eth.contract(address=Web3.to_checksum_address(token_address), abi=_abi("oft.json"))


def remove_dust(web3: Web3, token_address: str, amount: int) -> int:
    """Truncate ``amount`` to what the OFT actually sends after shared-decimal conversion."""
    contract = oft_contract(web3, token_address)
    decimals = contract.functions.decimals().call()
    shared_decimals = contract.functions.sharedDecimals().call()
    rate = 10 ** (decimals - shared_decimals)
    return (amount // rate) * rate


def quote_bridge_fee(
    *,
    web3: Web3,
    validator_address: str,
    token: str,
    dst_eid: int,
    dst_address: str,
    amount: int,
    min_amount_ld: int,
    extra_options: bytes,
) -> int:
    """Ask the validator for the native fee of a bridge send with these exact parameters."""
    contract = validator_contract(web3, validator_address)
    return contract.functions.quoteBridge(
        Web3.to_checksum_address(token),
        dst_eid,
        Web3.to_checksum_address(dst_address),
        amount,
        min_amount_ld,
        extra_options,
    ).call()


def _block_timestamp(web3: Web3) -> int:
    return int(web3.eth.get_block("latest")["timestamp"])


def _bridge_terms(
    config: RelayerConfig,
    web3: Web3,
    token: str,
    amount: int,
    extra_options: Optional[bytes],
    slippage_bps: Optional[int],
) -> Tuple[bytes, int]:
    if extra_options is None:
        extra_options = build_lz_receive_options(config.defaults.lz_receive_gas)
    if slippage_bps is None:
        slippage_bps = config.defaults.slippage_bps
    min_amount_ld = apply_slippage(remove_dust(web3, token, amount), slippage_bps)
    return extra_options, min_amount_ld


def _sign_allowance_permit(
    *,
    config: RelayerConfig,
    web3: Web3,
    owner_key: str,
    token: str,
    amount: int,
    now: int,
) -> Tuple[PermitSingle, bytes]:
    owner = Account.from_key(owner_key).address
    validator = config.contracts.validator_address
    nonce = current_allowance_nonce(web3, config.contracts.permit2_address, owner, token, validator)
    deadline = now + config.defaults.permit_ttl_seconds
    if deadline > MAX_UINT48:
        raise ValueError(f"Permit expiration {deadline} does not fit in uint48")

    permit_single = PermitSingle(
        details=PermitDetails(
            token=Web3.to_checksum_address(token),
            amount=amount,
            expiration=deadline,
            nonce=nonce,
        ),
        spender=validator,
        sig_deadline=deadline,
    )
    signature = eip712.sign_permit_single(
        permit_single,
        owner_key,
        config.network.chain_id,
        config.contracts.permit2_address,
    )
    LOGGER.info("Signed allowance permit owner=%s token=%s amount=%s nonce=%s", owner, token, amount, nonce)
    return permit_single, signature


def build_transfer_plan(
    *,
    config: RelayerConfig,
    web3: Web3,
    owner_key: str,
    token: str,
    amount: int,
    recipient: Optional[str] = None,
    now: Optional[int] = None,
) -> RelayPlan:
    """Plan ``validatePermitAndTransfer`` (or ``receiveTokensWithPermit`` without a recipient)."""
    ensure_web3_connected(web3, expected_chain_id=config.network.chain_id)
    owner = Account.from_key(owner_key).address
    now = _block_timestamp(web3) if now is None else now

    validate_owner_funds(
        web3=web3,
        token_address=token,
        owner=owner,
        permit2_address=config.contracts.permit2_address,
        amount=amount,
    )
    permit_single, signature = _sign_allowance_permit(
        config=config, web3=web3, owner_key=owner_key, token=token, amount=amount, now=now
    )
    validate_transfer_request(permit_single, config.contracts.validator_address, recipient=recipient, amount=amount)

    if recipient is None:
        function_name = "receiveTokensWithPermit"
        args: Tuple[Any, ...] = (permit_single.as_tuple(), signature, owner, amount)
    else:
        function_name = "validatePermitAndTransfer"
        args = (permit_single.as_tuple(), signature, owner, Web3.to_checksum_address(recipient), amount)

    return RelayPlan(
        function_name=function_name,
        args=args,
        native_value=0,
        owner=owner,
        token=permit_single.token,
        amount=amount,
        nonce=permit_single.details.nonce,
        deadline=permit_single.sig_deadline,
        signature=signature,
    )


def build_bridge_plan(
    *,
    config: RelayerConfig,
    web3: Web3,
    owner_key: str,
    token: str,
    amount: int,
    dst_eid: int,
    dst_address: str,
    extra_options: Optional[bytes] = None,
    slippage_bps: Optional[int] = None,
    now: Optional[int] = None,
    quote_fn: Callable[..., int] = quote_bridge_fee,
) -> RelayPlan:
    """Plan ``receiveAndBridge``: allowance permit, pull, approve and send in one call."""
    ensure_web3_connected(web3, expected_chain_id=config.network.chain_id)
    owner = Account.from_key(owner_key).address
    now = _block_timestamp(web3) if now is None else now
    check_destination(dst_address)
    dst_address = Web3.to_checksum_address(dst_address)

    validate_owner_funds(
        web3=web3,
        token_address=token,
        owner=owner,
        permit2_address=config.contracts.permit2_address,
        amount=amount,
    )
    extra_options, min_amount_ld = _bridge_terms(config, web3, token, amount, extra_options, slippage_bps)
    permit_single, signature = _sign_allowance_permit(
        config=config, web3=web3, owner_key=owner_key, token=token, amount=amount, now=now
    )
    validate_transfer_request(permit_single, config.contracts.validator_address, recipient=None, amount=amount)

    native_fee = quote_fn(
        web3=web3,
        validator_address=config.contracts.validator_address,
        token=permit_single.token,
        dst_eid=dst_eid,
        dst_address=dst_address,
        amount=amount,
        min_amount_ld=min_amount_ld,
        extra_options=extra_options,
    )
    LOGGER.info(
        "Prepared receiveAndBridge owner=%s amount=%s dst_eid=%s min_amount_ld=%s fee=%s",
        owner,
        amount,
        dst_eid,
        min_amount_ld,
        native_fee,
    )

    return RelayPlan(
        function_name="receiveAndBridge",
        args=(
            permit_single.as_tuple(),
            signature,
            owner,
            amount,
            dst_eid,
            dst_address,
            min_amount_ld,
            extra_options,
        ),
        native_value=native_fee,
        owner=owner,
        token=permit_single.token,
        amount=amount,
        nonce=permit_single.details.nonce,
        deadline=permit_single.sig_deadline,
        signature=signature,
        dst_eid=dst_eid,
        dst_address=dst_address,
        min_amount_ld=min_amount_ld,
        extra_options=extra_options,
    )


def build_gasless_bridge_plan(
    *,
    config: RelayerConfig,
    web3: Web3,
    owner_key: str,
    token: str,
    amount: int,
    dst_eid: int,
    dst_address: str,
    extra_options: Optional[bytes] = None,
    slippage_bps: Optional[int] = None,
    now: Optional[int] = None,
    quote_fn: Callable[..., int] = quote_bridge_fee,
) -> RelayPlan:
    """Plan ``receiveAndBridgeGasless``: one signature transfer, then approve and send.

    The permit is signed for the validator as spender and an unused bitmap
    nonce, so the owner never sends a transaction.
    """
    ensure_web3_connected(web3, expected_chain_id=config.network.chain_id)
    owner = Account.from_key(owner_key).address
    now = _block_timestamp(web3) if now is None else now
    validator = config.contracts.validator_address

    validate_owner_funds(
        web3=web3,
        token_address=token,
        owner=owner,
        permit2_address=config.contracts.permit2_address,
        amount=amount,
    )
    nonce = next_unordered_nonce(
        web3,
        config.contracts.permit2_address,
        owner,
        max_words=config.defaults.max_nonce_attempts,
    )
    permit = PermitTransferFrom(
        permitted=TokenPermissions(token=Web3.to_checksum_address(token), amount=amount),
        nonce=nonce,
        deadline=now + config.defaults.permit_ttl_seconds,
    )
    validate_signature_transfer(permit, dst_address)
    dst_address = Web3.to_checksum_address(dst_address)

    signature = eip712.sign_permit_transfer_from(
        permit,
        validator,
        owner_key,
        config.network.chain_id,
        config.contracts.permit2_address,
    )
    extra_options, min_amount_ld = _bridge_terms(config, web3, token, amount, extra_options, slippage_bps)
    native_fee = quote_fn(
        web3=web3,
        validator_address=validator,
        token=permit.token,
        dst_eid=dst_eid,
        dst_address=dst_address,
        amount=amount,
        min_amount_ld=min_amount_ld,
        extra_options=extra_options,
    )
    LOGGER.info(
        "Prepared receiveAndBridgeGasless owner=%s amount=%s nonce=%s dst_eid=%s fee=%s",
        owner,
        amount,
        nonce,
        dst_eid,
        native_fee,
    )

    return RelayPlan(
        function_name="receiveAndBridgeGasless",
        args=(
            permit.as_tuple(),
            owner,
            signature,
            dst_eid,
            dst_address,
            min_amount_ld,
            extra_options,
        ),
        native_value=native_fee,
        owner=owner,
        token=permit.token,
        amount=amount,
        nonce=nonce,
        deadline=permit.deadline,
        signature=signature,
        dst_eid=dst_eid,
        dst_address=dst_address,
        min_amount_ld=min_amount_ld,
        extra_options=extra_options,
    )


@dataclass(frozen=True)
class OFTDeployment:
    """On-chain state of one configured bridge token."""

    symbol: str
    address: str
    has_code: bool
    decimals: Optional[int] = None
    shared_decimals: Optional[int] = None
    peers: Optional[Dict[str, bytes]] = None

    @property
    def missing_peers(self) -> List[str]:
        return [name for name, peer in (self.peers or {}).items() if peer == b"\x00" * 32]


def inspect_oft(web3: Web3, symbol: str, token_address: str, destinations: Dict[str, int]) -> OFTDeployment:
    """Read code, decimals and peers of a bridge token without sending anything."""
    address = Web3.to_checksum_address(token_address)
    code = web3.eth.get_code(address)
    if not code:
        LOGGER.warning("No contract at %s (%s)", address, symbol)
        return OFTDeployment(symbol=symbol, address=address, has_code=False)

    contract = oft_contract(web3, address)
    peers = {name: bytes(contract.functions.peers(eid).call()) for name, eid in destinations.items()}
    return OFTDeployment(
        symbol=symbol,
        address=address,
        has_code=True,
        decimals=contract.functions.decimals().call(),
        shared_decimals=contract.functions.sharedDecimals().call(),
        peers=peers,
    )


__all__ = [
    "OFTDeployment",
    "RelayPlan",
    "build_bridge_plan",
    "build_gasless_bridge_plan",
    "build_transfer_plan",
    "inspect_oft",
    "oft_contract",
    "quote_bridge_fee",
    "remove_dust",
    "validator_contract",
]
