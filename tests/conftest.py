"""Shared fixtures: a ledger with Permit2, a 6-decimal OFT with a peer, and the validator."""

import json
from typing import Callable, Optional, Tuple

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount

from permit_relay.config import RelayerConfig, load_config
from permit_relay.core import eip712
from permit_relay.core.erc20 import MAX_UINT256
from permit_relay.core.ledger import Ledger
from permit_relay.core.oft import DestinationPricing, Endpoint, OFTToken
from permit_relay.core.options import build_lz_receive_options
from permit_relay.core.registry import Permit2
from permit_relay.core.types import PermitDetails, PermitSingle, PermitTransferFrom, TokenPermissions
from permit_relay.core.utils import address_to_bytes32
from permit_relay.core.validator import Permit2TransferValidator

CHAIN_ID = 11155111
SRC_EID = 40161
DST_EID = 40245
START_TIME = 1_700_000_000

VALIDATOR_ADDRESS = "0x762579DFD5e62Ab797282dc5495A92b8b6E7cB25"
OFT_ADDRESS = "0x07b091cC0eef5b03A41eB4bDD059B388cd3560D1"
ENDPOINT_ADDRESS = "0x6EDCE65403992e310A62460808c4b910D972f10f"
PEER_ADDRESS = "0x004690Ee41C0Dd2AcEf094D01b93b60aa9a06bb9"
DESTINATION = "0x1111111111111111111111111111111111111111"

OWNER_KEY = "0x" + "a1" * 32
OTHER_KEY = "0x" + "b2" * 32
RELAYER_KEY = "0x" + "c3" * 32

OWNER_BALANCE = 10_000_000
RELAYER_NATIVE = 10**18

PRICING = DestinationPricing(base_fee=10**14, gas_price=10**9, per_byte_fee=10**10)


@pytest.fixture()
def ledger() -> Ledger:
    return Ledger(chain_id=CHAIN_ID, timestamp=START_TIME)


@pytest.fixture()
def owner() -> LocalAccount:
    return Account.from_key(OWNER_KEY)


@pytest.fixture()
def other() -> LocalAccount:
    return Account.from_key(OTHER_KEY)


@pytest.fixture()
def relayer(ledger) -> str:
    """Funded account that submits calls on the owner's behalf."""
    address = Account.from_key(RELAYER_KEY).address
    ledger.fund(address, RELAYER_NATIVE)
    return address


@pytest.fixture()
def permit2(ledger) -> Permit2:
    return Permit2(ledger)


@pytest.fixture()
def endpoint(ledger) -> Endpoint:
    endpoint = Endpoint(ledger, ENDPOINT_ADDRESS, SRC_EID)
    endpoint.set_pricing(DST_EID, PRICING)
    return endpoint


@pytest.fixture()
def oft(ledger, endpoint, permit2, owner) -> OFTToken:
    """6-decimal OFT: shared decimals equal local decimals, so no dust."""
    token = OFTToken(ledger, OFT_ADDRESS, name="USD Coin", symbol="USDC", decimals=6, endpoint=endpoint)
    token.set_peer(DST_EID, address_to_bytes32(PEER_ADDRESS))
    token.mint(owner.address, OWNER_BALANCE)
    token.approve(owner.address, permit2.address, MAX_UINT256)
    return token


@pytest.fixture()
def validator(ledger, permit2, oft) -> Permit2TransferValidator:
    return Permit2TransferValidator(ledger, VALIDATOR_ADDRESS, permit2)


@pytest.fixture()
def options() -> bytes:
    return build_lz_receive_options(60_000)


@pytest.fixture()
def sign_allowance(ledger, permit2) -> Callable[..., Tuple[PermitSingle, bytes]]:
    """Factory signing a ``PermitSingle`` for the given spender."""

    def _sign(
        key: str,
        token: str,
        spender: str,
        amount: int,
        *,
        nonce: int = 0,
        expiration: Optional[int] = None,
        sig_deadline: Optional[int] = None,
    ) -> Tuple[PermitSingle, bytes]:
        permit_single = PermitSingle(
            details=PermitDetails(
                token=token,
                amount=amount,
                expiration=ledger.timestamp + 3600 if expiration is None else expiration,
                nonce=nonce,
            ),
            spender=spender,
            sig_deadline=ledger.timestamp + 3600 if sig_deadline is None else sig_deadline,
        )
        signature = eip712.sign_permit_single(permit_single, key, ledger.chain_id, permit2.address)
        return permit_single, signature

    return _sign


@pytest.fixture()
def sign_transfer(ledger, permit2) -> Callable[..., Tuple[PermitTransferFrom, bytes]]:
    """Factory signing a ``PermitTransferFrom`` with ``spender`` hashed in."""

    def _sign(
        key: str,
        token: str,
        spender: str,
        amount: int,
        *,
        nonce: int = 0,
        deadline: Optional[int] = None,
    ) -> Tuple[PermitTransferFrom, bytes]:
        permit = PermitTransferFrom(
            permitted=TokenPermissions(token=token, amount=amount),
            nonce=nonce,
            deadline=ledger.timestamp + 3600 if deadline is None else deadline,
        )
        signature = eip712.sign_permit_transfer_from(permit, spender, key, ledger.chain_id, permit2.address)
        return permit, signature

    return _sign


@pytest.fixture()
def config_data() -> dict:
    return {
        "network": {
            "name": "sepolia",
            "chain_id": CHAIN_ID,
            "rpc_url": "http://localhost:8545",
            "endpoint_id": SRC_EID,
        },
        "contracts": {
            "validator_address": VALIDATOR_ADDRESS.lower(),
            "oft_tokens": {"USDC": OFT_ADDRESS},
        },
        "destinations": {"base-sepolia": DST_EID, "optimism-sepolia": 40232},
        "defaults": {
            "permit_ttl_seconds": 3600,
            "lz_receive_gas": 60_000,
            "slippage_bps": 50,
            "max_nonce_attempts": 4,
            "api_timeout": 10,
        },
        "api_urls": {"layerzero_scan": "https://scan.example/v1/"},
    }


@pytest.fixture()
def config_path(tmp_path, config_data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config_data), encoding="utf-8")
    return path


@pytest.fixture()
def relayer_config(config_path) -> RelayerConfig:
    return load_config(config_path)
