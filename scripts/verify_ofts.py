#!/usr/bin/env python3
"""Check that every configured OFT is deployed and has a peer on every configured destination."""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from web3 import Web3

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from permit_relay.config import load_config
from permit_relay.core.bridge import inspect_oft

load_dotenv()


def main() -> None:
    config = load_config()
    rpc_url = os.getenv("RPC_URL") or config.network.ensure_rpc_url()
    web3 = Web3(Web3.HTTPProvider(rpc_url))
    if not web3.is_connected():
        print(f"❌ Error: Failed to connect to RPC: {rpc_url}")
        sys.exit(1)

    print(f"🔍 Checking OFTs on {config.network.name} (chain {config.network.chain_id})\n")
    problems = 0
    for token in config.contracts.oft_tokens:
        deployment = inspect_oft(web3, token.symbol, token.address, config.destinations)
        if not deployment.has_code:
            problems += 1
            print(f"❌ {token.symbol}: no contract at {token.address}\n")
            continue

        print(f"✅ {token.symbol}: {deployment.address}")
        print(f"   decimals={deployment.decimals} sharedDecimals={deployment.shared_decimals}")
        for name in config.destinations:
            marker = "❌" if name in deployment.missing_peers else "✅"
            print(f"   {marker} peer on {name}: 0x{deployment.peers[name].hex()}")
        problems += len(deployment.missing_peers)
        print()

    if problems:
        sys.exit(1)


if __name__ == "__main__":
    main()
