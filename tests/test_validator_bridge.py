"""Bridge entry points: receiveAndBridge, receiveAndBridgeGasless, quoteBridge and withdraw."""

import pytest

from permit_relay.core.errors import (
    InsufficientBalance,
    InsufficientFee,
    InsufficientNativeBalance,
    InvalidAmount,
    InvalidDestination,
    InvalidNonce,
    InvalidPermitAmount,
    InvalidRecipient,
    InvalidSigner,
    InvalidToken,
    NoContractCode,
    NoPeer,
    SlippageExceeded,
    Unauthorized,
)
from permit_relay.core.erc20 import MAX_UINT256
from permit_relay.core.oft import OFTToken
from permit_relay.core.types import BridgeInitiated, OFTSent, TokensTransferred
from permit_relay.core.utils import ZERO_ADDRESS, address_to_bytes32

from conftest import DESTINATION, DST_EID, OTHER_KEY, OWNER_BALANCE, OWNER_KEY, PEER_ADDRESS, RELAYER_NATIVE


def _quote(validator, oft, amount, options, min_amount_ld=None):
    return validator.quote_bridge(
        oft.address, DST_EID, DESTINATION, amount, amount if min_amount_ld is None else min_amount_ld, options
    )


def _snapshot(ledger, oft, permit2, owner, validator, relayer, endpoint):
    return (
        oft.balance_of(owner.address),
        oft.balance_of(validator.address),
        oft.total_supply(),
        oft.allowance(validator.address, oft.address),
        permit2.allowance(owner.address, oft.address, validator.address),
        permit2.nonce_bitmap(owner.address, 0),
        ledger.balance(relayer),
        ledger.balance(endpoint.address),
        ledger.logs,
    )


def test_receive_and_bridge(ledger, validator, oft, endpoint, owner, relayer, options, sign_allowance):
    permit_single, signature = sign_allowance(OWNER_KEY, oft.address, validator.address, 1_000_000)
    fee = _quote(validator, oft, 1_000_000, options)

    outcome = validator.receive_and_bridge(
        relayer, permit_single, signature, owner.address, 1_000_000, DST_EID, DESTINATION, 1_000_000, options, fee
    )

    assert outcome.transfer.amount == 1_000_000
    assert outcome.guid != b"\x00" * 32
    assert outcome.receipt.nonce == 1
    assert outcome.oft_receipt.amount_received_ld == 1_000_000
    assert oft.balance_of(owner.address) == OWNER_BALANCE - 1_000_000
    assert oft.total_supply() == OWNER_BALANCE - 1_000_000
    assert ledger.balance(endpoint.address) == fee
    assert ledger.balance(relayer) == RELAYER_NATIVE - fee

    validator_events = ledger.events(address=validator.address)
    assert [type(event) for event in validator_events] == [TokensTransferred, BridgeInitiated]
    assert validator_events[1] == BridgeInitiated(
        from_=owner.address,
        token=oft.address,
        dst_eid=DST_EID,
        dst_address=DESTINATION,
        amount=1_000_000,
        guid=outcome.guid,
    )
    assert ledger.events(OFTSent)[0].guid == outcome.guid


def test_bridge_leaves_validator_balance_unchanged(validator, oft, owner, relayer, options, sign_allowance):
    oft.mint(validator.address, 123)
    permit_single, signature = sign_allowance(OWNER_KEY, oft.address, validator.address, 500_000)
    fee = _quote(validator, oft, 500_000, options)

    validator.receive_and_bridge(
        relayer, permit_single, signature, owner.address, 500_000, DST_EID, DESTINATION, 500_000, options, fee
    )

    assert oft.balance_of(validator.address) == 123
    assert oft.allowance(validator.address, oft.address) == 0


def test_quoted_fee_succeeds_one_wei_less_fails(
    ledger, validator, oft, permit2, endpoint, owner, relayer, options, sign_allowance
):
    """The exact quote goes through, one wei less is refused by the bridge."""
    permit_single, signature = sign_allowance(OWNER_KEY, oft.address, validator.address, 1_000_000)
    fee = _quote(validator, oft, 1_000_000, options)
    before = _snapshot(ledger, oft, permit2, owner, validator, relayer, endpoint)

    with pytest.raises(InsufficientFee) as exc_info:
        validator.receive_and_bridge(
            relayer, permit_single, signature, owner.address, 1_000_000, DST_EID, DESTINATION, 1_000_000, options, fee - 1
        )
    assert exc_info.value.revert_args == (fee, fee - 1)
    assert _snapshot(ledger, oft, permit2, owner, validator, relayer, endpoint) == before

    outcome = validator.receive_and_bridge(
        relayer, permit_single, signature, owner.address, 1_000_000, DST_EID, DESTINATION, 1_000_000, options, fee
    )
    assert outcome.receipt.fee.native_fee == fee


def test_excess_fee_is_refunded_to_caller(ledger, validator, oft, endpoint, owner, relayer, options, sign_allowance):
    permit_single, signature = sign_allowance(OWNER_KEY, oft.address, validator.address, 1_000_000)
    fee = _quote(validator, oft, 1_000_000, options)

    validator.receive_and_bridge(
        relayer,
        permit_single,
        signature,
        owner.address,
        1_000_000,
        DST_EID,
        DESTINATION,
        1_000_000,
        options,
        fee + 5_000,
    )

    assert ledger.balance(endpoint.address) == fee
    assert ledger.balance(relayer) == RELAYER_NATIVE - fee
    assert ledger.balance(validator.address) == 0


def test_bridge_failure_rolls_back_pull(
    ledger, validator, oft, permit2, endpoint, owner, relayer, options, sign_allowance
):
    """A slippage revert inside the bridge undoes the Permit2 nonce bump and the token pull."""
    permit_single, signature = sign_allowance(OWNER_KEY, oft.address, validator.address, 1_000_000)
    fee = _quote(validator, oft, 1_000_000, options)
    before = _snapshot(ledger, oft, permit2, owner, validator, relayer, endpoint)

    with pytest.raises(SlippageExceeded):
        validator.receive_and_bridge(
            relayer, permit_single, signature, owner.address, 1_000_000, DST_EID, DESTINATION, 1_000_001, options, fee
        )

    assert _snapshot(ledger, oft, permit2, owner, validator, relayer, endpoint) == before


def test_unknown_destination_rolls_back(ledger, validator, oft, permit2, endpoint, owner, relayer, options, sign_allowance):
    permit_single, signature = sign_allowance(OWNER_KEY, oft.address, validator.address, 1_000_000)
    before = _snapshot(ledger, oft, permit2, owner, validator, relayer, endpoint)

    with pytest.raises(NoPeer):
        validator.receive_and_bridge(
            relayer, permit_single, signature, owner.address, 1_000_000, 30101, DESTINATION, 1_000_000, options, 10**15
        )

    assert _snapshot(ledger, oft, permit2, owner, validator, relayer, endpoint) == before


def test_relayer_without_native_cannot_pay(ledger, validator, oft, owner, other, options, sign_allowance):
    permit_single, signature = sign_allowance(OWNER_KEY, oft.address, validator.address, 1_000_000)

    with pytest.raises(InsufficientNativeBalance):
        validator.receive_and_bridge(
            other.address, permit_single, signature, owner.address, 1_000_000, DST_EID, DESTINATION, 1_000_000, options, 10**15
        )


def test_zero_destination_rejected(ledger, validator, oft, owner, relayer, options, sign_allowance):
    permit_single, signature = sign_allowance(OWNER_KEY, oft.address, validator.address, 1_000_000)

    with pytest.raises(InvalidDestination):
        validator.receive_and_bridge(
            relayer, permit_single, signature, owner.address, 1_000_000, DST_EID, ZERO_ADDRESS, 1_000_000, options, 10**15
        )
    assert ledger.balance(relayer) == RELAYER_NATIVE


def test_bridging_a_plain_erc20_fails(ledger, permit2, owner, relayer, options, sign_allowance):
    from permit_relay.core.erc20 import ERC20Token
    from permit_relay.core.validator import Permit2TransferValidator

    plain = ERC20Token(ledger, "0x" + "77" * 20, name="Plain", symbol="PLN", decimals=6)
    plain.mint(owner.address, 1_000)
    plain.approve(owner.address, permit2.address, 1_000)
    validator = Permit2TransferValidator(ledger, "0x" + "44" * 20, permit2)
    permit_single, signature = sign_allowance(OWNER_KEY, plain.address, validator.address, 1_000)

    with pytest.raises(NoContractCode):
        validator.receive_and_bridge(
            relayer, permit_single, signature, owner.address, 1_000, DST_EID, DESTINATION, 1_000, options, 10**15
        )
    assert plain.balance_of(owner.address) == 1_000


def test_gasless_bridge(ledger, validator, oft, permit2, owner, relayer, options, sign_transfer):
    """A gasless bridge spends one signature transfer of 500,000 and emits one bridge message."""
    permit, signature = sign_transfer(OWNER_KEY, oft.address, validator.address, 500_000, nonce=7)
    fee = _quote(validator, oft, 500_000, options)

    outcome = validator.receive_and_bridge_gasless(
        relayer, permit, owner.address, signature, DST_EID, DESTINATION, 500_000, options, fee
    )

    assert outcome.transfer.amount == 500_000
    assert outcome.guid != b"\x00" * 32
    assert oft.balance_of(owner.address) == OWNER_BALANCE - 500_000
    assert oft.balance_of(validator.address) == 0
    assert permit2.nonce_bitmap(owner.address, 0) == 1 << 7

    validator_events = ledger.events(address=validator.address)
    assert validator_events == [
        TokensTransferred(from_=owner.address, to=validator.address, token=oft.address, amount=500_000),
        BridgeInitiated(
            from_=owner.address,
            token=oft.address,
            dst_eid=DST_EID,
            dst_address=DESTINATION,
            amount=500_000,
            guid=outcome.guid,
        ),
    ]


def test_gasless_bridge_reports_amount_sent_without_dust(ledger, validator, endpoint, permit2, owner, relayer, options, sign_transfer):
    """With 18 local decimals the event carries the dust-free amount; the dust stays with the validator."""
    wide = OFTToken(ledger, "0x" + "88" * 20, name="Wide", symbol="WIDE", decimals=18, endpoint=endpoint)
    wide.set_peer(DST_EID, address_to_bytes32(PEER_ADDRESS))
    wide.mint(owner.address, 10**18)
    wide.approve(owner.address, permit2.address, MAX_UINT256)
    amount = 10**12 + 5
    permit, signature = sign_transfer(OWNER_KEY, wide.address, validator.address, amount)
    fee = validator.quote_bridge(wide.address, DST_EID, DESTINATION, amount, 10**12, options)

    outcome = validator.receive_and_bridge_gasless(
        relayer, permit, owner.address, signature, DST_EID, DESTINATION, 10**12, options, fee
    )

    assert outcome.transfer.amount == amount
    assert outcome.oft_receipt.amount_sent_ld == 10**12
    bridged = ledger.events(BridgeInitiated, address=validator.address)
    assert [event.amount for event in bridged] == [10**12]
    assert wide.balance_of(validator.address) == 5
    assert wide.allowance(validator.address, wide.address) == 5


def test_gasless_replay_rejected(ledger, validator, oft, owner, relayer, options, sign_transfer):
    permit, signature = sign_transfer(OWNER_KEY, oft.address, validator.address, 500_000)
    fee = _quote(validator, oft, 500_000, options)
    validator.receive_and_bridge_gasless(relayer, permit, owner.address, signature, DST_EID, DESTINATION, 500_000, options, fee)
    logs = ledger.logs

    with pytest.raises(InvalidNonce):
        validator.receive_and_bridge_gasless(
            relayer, permit, owner.address, signature, DST_EID, DESTINATION, 500_000, options, fee
        )
    assert ledger.logs == logs


def test_gasless_signature_bound_to_validator(validator, oft, permit2, owner, relayer, options, sign_transfer):
    """A signature-transfer permit signed for another spender does not verify for the validator."""
    permit, signature = sign_transfer(OWNER_KEY, oft.address, DESTINATION, 500_000)

    with pytest.raises(InvalidSigner):
        validator.receive_and_bridge_gasless(
            relayer, permit, owner.address, signature, DST_EID, DESTINATION, 500_000, options, 10**15
        )
    assert permit2.nonce_bitmap(owner.address, 0) == 0


def test_gasless_wrong_owner(validator, oft, owner, relayer, options, sign_transfer):
    permit, signature = sign_transfer(OTHER_KEY, oft.address, validator.address, 500_000)

    with pytest.raises(InvalidSigner):
        validator.receive_and_bridge_gasless(
            relayer, permit, owner.address, signature, DST_EID, DESTINATION, 500_000, options, 10**15
        )


@pytest.mark.parametrize(
    "token_is_zero, amount, destination, expected",
    [
        (True, 500_000, DESTINATION, InvalidToken),
        (False, 0, DESTINATION, InvalidAmount),
        (False, 500_000, ZERO_ADDRESS, InvalidDestination),
    ],
)
def test_gasless_local_checks(validator, oft, owner, relayer, options, sign_transfer, token_is_zero, amount, destination, expected):
    token = ZERO_ADDRESS if token_is_zero else oft.address
    permit, signature = sign_transfer(OWNER_KEY, token, validator.address, amount)

    with pytest.raises(expected):
        validator.receive_and_bridge_gasless(
            relayer, permit, owner.address, signature, DST_EID, destination, amount, options, 0
        )


def test_gasless_registry_caps_requested_amount(ledger, oft, permit2, owner, sign_transfer):
    from permit_relay.core.types import SignatureTransferDetails

    permit, signature = sign_transfer(OWNER_KEY, oft.address, DESTINATION, 100)

    with pytest.raises(InvalidPermitAmount):
        permit2.permit_transfer_from(
            DESTINATION, permit, SignatureTransferDetails(to=DESTINATION, requested_amount=101), owner.address, signature
        )


def test_quote_bridge(validator, oft, endpoint, options):
    fee = _quote(validator, oft, 1_000_000, options)

    # 32-byte receiver plus 8-byte shared-decimal amount
    assert fee == 10**14 + 60_000 * 10**9 + 40 * 10**10


def test_quote_bridge_rejects_zero_token(validator, options):
    with pytest.raises(InvalidToken):
        validator.quote_bridge(ZERO_ADDRESS, DST_EID, DESTINATION, 1, 1, options)


def test_quote_bridge_unknown_destination(validator, oft, options):
    with pytest.raises(NoPeer):
        validator.quote_bridge(oft.address, 30101, DESTINATION, 1_000, 1_000, options)


def test_withdraw_self_service(validator, oft, other):
    """Anyone may call withdraw naming themselves as destination; it only grants an approval."""
    oft.mint(validator.address, 5_000)

    validator.withdraw(other.address, oft.address, other.address, 4_000)

    assert oft.allowance(validator.address, other.address) == 4_000
    assert oft.balance_of(validator.address) == 5_000
    oft.transfer_from(other.address, validator.address, other.address, 4_000)
    assert oft.balance_of(other.address) == 4_000


def test_withdraw_to_third_party_unauthorized(validator, oft, owner, other):
    oft.mint(validator.address, 5_000)

    with pytest.raises(Unauthorized):
        validator.withdraw(other.address, oft.address, owner.address, 1_000)


def test_withdraw_by_validator_itself(validator, oft, owner):
    oft.mint(validator.address, 5_000)

    validator.withdraw(validator.address, oft.address, owner.address, 5_000)

    assert oft.allowance(validator.address, owner.address) == 5_000


def test_withdraw_checks_balance_and_destination(validator, oft, other):
    oft.mint(validator.address, 5_000)

    with pytest.raises(InsufficientBalance):
        validator.withdraw(other.address, oft.address, other.address, 5_001)
    with pytest.raises(InvalidRecipient):
        validator.withdraw(validator.address, oft.address, ZERO_ADDRESS, 1)


def test_withdraw_rejects_negative_amount(validator, oft, other):
    oft.mint(validator.address, 5_000)

    with pytest.raises(InvalidAmount):
        validator.withdraw(other.address, oft.address, other.address, -1)
    assert oft.allowance(validator.address, other.address) == 0
