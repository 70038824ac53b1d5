"""CLI entrypoint for relaying Permit2 transfers and bridge sends through the validator."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError

from permit_relay.config import RelayerConfig, load_config
from permit_relay.core.bridge import (
    RelayPlan,
    build_bridge_plan,
    build_gasless_bridge_plan,
    build_transfer_plan,
    quote_bridge_fee,
    remove_dust,
    validator_contract,
)
from permit_relay.core.options import build_lz_receive_options
from permit_relay.core.scan import fetch_message_status
from permit_relay.core.utils import apply_slippage, get_logger
from permit_relay.core.validation import NativeFundingResult, validate_native_funding

LOGGER = get_logger("permit_relay.cli")

load_dotenv()

FALLBACK_GAS_LIMIT = 1_000_000


@dataclass(frozen=True)
class GasParameters:
    """EIP-1559 gas parameters."""

    gas: int
    gas_price: int
    max_priority_fee: int
    max_fee: int
    estimated_cost: int


@dataclass(frozen=True)
class RelayRequest:
    """What the operator asked for on the command line."""

    command: str
    token: str
    amount: int
    dst_eid: Optional[int] = None
    dst_address: Optional[str] = None
    recipient: Optional[str] = None
    slippage_bps: Optional[int] = None


class RelayerExecutor:
    """Builds, simulates and submits validator calls for one relayer account."""

    def __init__(
        self,
        *,
        rpc_url: Optional[str],
        private_key: str,
        owner_key: Optional[str] = None,
        config: Optional[RelayerConfig] = None,
        web3_factory: Callable[[str], Web3] = lambda url: Web3(Web3.HTTPProvider(url)),
    ) -> None:
        self.config = config or load_config()

        resolved_rpc = rpc_url or self.config.network.ensure_rpc_url()
        self.web3 = web3_factory(resolved_rpc)

        if not self.web3.is_connected():
            raise ConnectionError(f"Failed to connect to RPC: {resolved_rpc}")
        if self.web3.eth.chain_id != self.config.network.chain_id:
            raise ValueError(f"Wrong chain! Expected {self.config.network.chain_id}, got {self.web3.eth.chain_id}")

        self.account = Account.from_key(private_key)
        self.address = self.account.address
        # A relayer may submit permits it signed itself.
        self.owner_key = owner_key or private_key
        LOGGER.info("Connected to %s (chain %s) as %s", self.config.network.name, self.web3.eth.chain_id, self.address)

        self.contract: Contract = validator_contract(self.web3, self.config.contracts.validator_address)

    def quote(self, request: RelayRequest) -> int:
        """Native fee for bridging ``request.amount`` with the configured options and slippage."""
        token = self.config.contracts.token(request.token).address
        slippage_bps = self.config.defaults.slippage_bps if request.slippage_bps is None else request.slippage_bps
        extra_options = build_lz_receive_options(self.config.defaults.lz_receive_gas)
        min_amount_ld = apply_slippage(remove_dust(self.web3, token, request.amount), slippage_bps)
        fee = quote_bridge_fee(
            web3=self.web3,
            validator_address=self.config.contracts.validator_address,
            token=token,
            dst_eid=request.dst_eid,
            dst_address=request.dst_address,
            amount=request.amount,
            min_amount_ld=min_amount_ld,
            extra_options=extra_options,
        )
        LOGGER.info(
            "Quote dst_eid=%s amount=%s min_amount_ld=%s fee=%.6f ETH",
            request.dst_eid,
            request.amount,
            min_amount_ld,
            fee / 10**18,
        )
        return fee

    def prepare_plan(self, request: RelayRequest) -> RelayPlan:
        """Sign the owner's permit and assemble the validator call."""
        token = self.config.contracts.token(request.token).address
        common = dict(config=self.config, web3=self.web3, owner_key=self.owner_key, token=token, amount=request.amount)

        if request.command == "transfer":
            return build_transfer_plan(recipient=request.recipient, **common)
        if request.command == "bridge":
            return build_bridge_plan(
                dst_eid=request.dst_eid,
                dst_address=request.dst_address,
                slippage_bps=request.slippage_bps,
                **common,
            )
        if request.command == "bridge-gasless":
            return build_gasless_bridge_plan(
                dst_eid=request.dst_eid,
                dst_address=request.dst_address,
                slippage_bps=request.slippage_bps,
                **common,
            )
        raise ValueError(f"Unsupported command: {request.command}")

    def check_native_funding(self, plan: RelayPlan) -> NativeFundingResult:
        return validate_native_funding(
            native_balance=self.web3.eth.get_balance(self.address),
            native_value=plan.native_value,
        )

    def _contract_call(self, plan: RelayPlan):
        return getattr(self.contract.functions, plan.function_name)(*plan.args)

    def estimate_gas(self, plan: RelayPlan) -> GasParameters:
        """Estimate gas usage for the prepared plan."""
        try:
            gas_estimate = self._contract_call(plan).estimate_gas({"from": self.address, "value": plan.native_value})
        except ContractLogicError as exc:
            raise ValueError(f"Contract would revert: {exc}") from exc

        gas_price = self.web3.eth.gas_price
        max_priority_fee = getattr(self.web3.eth, "max_priority_fee", gas_price)
        max_fee = gas_price + max_priority_fee
        return GasParameters(
            gas=gas_estimate,
            gas_price=gas_price,
            max_priority_fee=max_priority_fee,
            max_fee=max_fee,
            estimated_cost=gas_estimate * gas_price,
        )

    def build_transaction(self, plan: RelayPlan, gas: GasParameters) -> Dict[str, int]:
        """Build the 1559 transaction payload."""
        nonce = self.web3.eth.get_transaction_count(self.address)
        return self._contract_call(plan).build_transaction(
            {
                "from": self.address,
                "gas": int(gas.gas * 1.1),  # add a 10% buffer
                "maxFeePerGas": gas.max_fee,
                "maxPriorityFeePerGas": gas.max_priority_fee,
                "nonce": nonce,
                "chainId": self.config.network.chain_id,
                "value": plan.native_value,
            }
        )

    def execute_dry_run(self, request: RelayRequest) -> GasParameters:
        """Prepare and simulate the call without broadcasting."""
        plan = self.prepare_plan(request)
        self._log_plan(plan)
        gas = self.estimate_gas(plan)
        self._log_gas(gas)
        return gas

    def execute_send(self, request: RelayRequest) -> str:
        """Prepare the call, then sign, broadcast and wait for the receipt."""
        plan = self.prepare_plan(request)
        self._log_plan(plan)

        try:
            gas = self.estimate_gas(plan)
            self._log_gas(gas)
        except (ValueError, ContractLogicError) as exc:
            LOGGER.warning("Gas estimation failed: %s", exc)
            gas = self._fallback_gas()
            self._log_gas(gas, label="Fallback")

        tx = self.build_transaction(plan, gas)
        LOGGER.info("Signing transaction")
        signed = self.account.sign_transaction(tx)

        LOGGER.info("Broadcasting %s", plan.function_name)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = tx_hash.hex()
        LOGGER.info("Transaction hash: %s", tx_hex)

        LOGGER.info("Awaiting confirmation")
        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            LOGGER.error("Transaction failed! status=%s", receipt["status"])
            return tx_hex

        LOGGER.info("Transaction confirmed in block %s (gasUsed=%s)", receipt["blockNumber"], receipt["gasUsed"])
        if plan.dst_eid is not None:
            for event in self.contract.events.BridgeInitiated().process_receipt(receipt):
                LOGGER.info("Bridge message guid=0x%s dst_eid=%s", bytes(event["args"]["guid"]).hex(), event["args"]["dstEid"])
        return tx_hex

    def _log_plan(self, plan: RelayPlan) -> None:
        LOGGER.info("Call: %s", plan.function_name)
        LOGGER.info("Owner %s token %s amount %s", plan.owner, plan.token, plan.amount)
        LOGGER.info("Permit nonce %s, valid until %s", plan.nonce, plan.deadline)
        if plan.dst_eid is not None:
            LOGGER.info(
                "Bridge dst_eid=%s dst_address=%s min_amount_ld=%s options=0x%s",
                plan.dst_eid,
                plan.dst_address,
                plan.min_amount_ld,
                plan.extra_options.hex(),
            )
            LOGGER.info("Native fee: %.6f ETH", plan.native_value / 10**18)

        funding = self.check_native_funding(plan)
        if not funding.has_sufficient_native:
            LOGGER.warning(
                "Signer native balance %.6f ETH below required %.6f ETH",
                funding.native_balance / 10**18,
                funding.required_native / 10**18,
            )

    @staticmethod
    def _log_gas(gas: GasParameters, *, label: str = "Estimate") -> None:
        LOGGER.info(
            "%s gas=%s maxFee=%.2f gwei priority=%.2f gwei estimatedCost=%.6f ETH",
            label,
            gas.gas,
            gas.max_fee / 10**9,
            gas.max_priority_fee / 10**9,
            gas.estimated_cost / 10**18,
        )

    def _fallback_gas(self) -> GasParameters:
        gas_price = self.web3.eth.gas_price
        max_priority_fee = getattr(self.web3.eth, "max_priority_fee", gas_price)
        return GasParameters(
            gas=FALLBACK_GAS_LIMIT,
            gas_price=gas_price,
            max_priority_fee=max_priority_fee,
            max_fee=gas_price + max_priority_fee,
            estimated_cost=FALLBACK_GAS_LIMIT * gas_price,
        )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="permit-relay", description="Relay Permit2 transfers through the validator")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command", required=True)

    token_args = argparse.ArgumentParser(add_help=False)
    token_args.add_argument("token", help="OFT symbol or address from the config")
    token_args.add_argument("amount", type=int, help="Amount in token base units")

    bridge_args = argparse.ArgumentParser(add_help=False)
    bridge_args.add_argument("--dst", required=True, help="Destination name from the config, or an endpoint id")
    bridge_args.add_argument("--to", required=True, dest="dst_address", help="Receiver on the destination chain")
    bridge_args.add_argument("--slippage-bps", type=int, default=None, help="Override defaults.slippage_bps")

    mode_args = argparse.ArgumentParser(add_help=False)
    group = mode_args.add_mutually_exclusive_group(required=True)
    group.add_argument("--dry-run", action="store_true", help="Simulate transaction without sending")
    group.add_argument("--send", action="store_true", help="Sign and broadcast the transaction")

    subparsers.add_parser("quote", parents=[token_args, bridge_args], help="Quote the bridge fee")
    transfer = subparsers.add_parser(
        "transfer", parents=[token_args, mode_args], help="validatePermitAndTransfer / receiveTokensWithPermit"
    )
    transfer.add_argument("--recipient", default=None, help="Receiver of the tokens (default: the validator)")
    subparsers.add_parser("bridge", parents=[token_args, bridge_args, mode_args], help="receiveAndBridge")
    subparsers.add_parser(
        "bridge-gasless", parents=[token_args, bridge_args, mode_args], help="receiveAndBridgeGasless"
    )
    status = subparsers.add_parser("status", help="Look up bridge messages of a source transaction")
    status.add_argument("tx_hash")
    return parser.parse_args(argv)


def _run_status(config: RelayerConfig, tx_hash: str) -> None:
    messages = fetch_message_status(config, tx_hash)
    if not messages:
        print(f"No LayerZero messages found for {tx_hash}")
    for message in messages:
        print(f"{message.guid} {message.status} src={message.src_eid} dst={message.dst_eid} dst_tx={message.dst_tx_hash}")


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)

    try:
        config = load_config(args.config)
        if args.command == "status":
            _run_status(config, args.tx_hash)
            return
    except Exception as exc:
        print(f"\n❌ Error: {exc}")
        sys.exit(1)

    rpc_url_env = os.getenv("RPC_URL") or ""
    rpc_url = rpc_url_env.strip() or None

    private_key_env = os.getenv("PRIVATE_KEY") or ""
    private_key = private_key_env.strip()
    owner_key = (os.getenv("OWNER_PRIVATE_KEY") or "").strip() or None

    if not private_key:
        print("❌ Error: PRIVATE_KEY environment variable not set")
        sys.exit(1)

    try:
        request = RelayRequest(
            command=args.command,
            token=args.token,
            amount=args.amount,
            dst_eid=config.destination_eid(args.dst) if hasattr(args, "dst") else None,
            dst_address=getattr(args, "dst_address", None),
            recipient=getattr(args, "recipient", None),
            slippage_bps=getattr(args, "slippage_bps", None),
        )
        executor = RelayerExecutor(rpc_url=rpc_url, private_key=private_key, owner_key=owner_key, config=config)
        if args.command == "quote":
            fee = executor.quote(request)
            print(f"Native fee: {fee} wei ({fee / 10**18:.6f} ETH)")
        elif args.dry_run:
            executor.execute_dry_run(request)
        else:
            executor.execute_send(request)
    except Exception as exc:
        print(f"\n❌ Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
