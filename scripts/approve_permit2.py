#!/usr/bin/env python3
"""Approve Permit2 on every configured OFT so the owner can sign permits for it."""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from permit_relay.config import load_config
from permit_relay.core.tokens import approve_permit2, decimals_of, snapshot_balances
from permit_relay.core.utils import format_units

load_dotenv()


def main() -> None:
    config = load_config()
    rpc_url = os.getenv("RPC_URL") or config.network.ensure_rpc_url()
    private_key = (os.getenv("OWNER_PRIVATE_KEY") or os.getenv("PRIVATE_KEY") or "").strip()
    if not private_key:
        print("❌ Error: OWNER_PRIVATE_KEY or PRIVATE_KEY environment variable not set")
        sys.exit(1)

    web3 = Web3(Web3.HTTPProvider(rpc_url))
    if not web3.is_connected():
        print(f"❌ Error: Failed to connect to RPC: {rpc_url}")
        sys.exit(1)

    account = Account.from_key(private_key)
    print(f"🔧 Approving Permit2 ({config.contracts.permit2_address}) for {account.address} on {config.network.name}")

    balances = snapshot_balances(web3, {token.symbol: token.address for token in config.contracts.oft_tokens}, account.address)
    for token in config.contracts.oft_tokens:
        print(f"   {token.symbol}: {format_units(balances[token.symbol], decimals_of(web3, token.address))}")
    print()

    failures = 0
    for token in config.contracts.oft_tokens:
        try:
            tx_hash = approve_permit2(web3, account, token.address, config.contracts.permit2_address)
        except (ValueError, ConnectionError) as exc:
            failures += 1
            print(f"❌ {token.symbol} ({token.address}): {exc}")
            continue
        if tx_hash is None:
            print(f"✅ {token.symbol}: already approved")
        else:
            print(f"✅ {token.symbol}: approved in {tx_hash}")

    if failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
