"""Command line parsing and the relayer executor with a mocked RPC."""

from unittest.mock import MagicMock

import pytest
from web3.exceptions import ContractLogicError

from permit_relay.cli import main as cli
from permit_relay.core.bridge import RelayPlan
from permit_relay.core.scan import MessageStatus

from conftest import CHAIN_ID, DESTINATION, DST_EID, RELAYER_KEY

TX_HASH = "0x" + "ab" * 32


@pytest.fixture()
def web3():
    web3 = MagicMock()
    web3.is_connected.return_value = True
    web3.eth.chain_id = CHAIN_ID
    web3.eth.gas_price = 2 * 10**9
    web3.eth.max_priority_fee = 10**9
    web3.eth.get_balance.return_value = 10**18
    return web3


@pytest.fixture()
def executor(relayer_config, web3):
    return cli.RelayerExecutor(
        rpc_url=None, private_key=RELAYER_KEY, config=relayer_config, web3_factory=lambda url: web3
    )


def _plan(**overrides):
    values = dict(
        function_name="receiveTokensWithPermit",
        args=(),
        native_value=0,
        owner=DESTINATION,
        token=DESTINATION,
        amount=1,
        nonce=0,
        deadline=0,
        signature=b"",
    )
    values.update(overrides)
    return RelayPlan(**values)


def test_parse_bridge_args():
    args = cli._parse_args(["bridge", "USDC", "1000", "--dst", "base-sepolia", "--to", DESTINATION, "--dry-run"])

    assert (args.command, args.token, args.amount) == ("bridge", "USDC", 1000)
    assert args.dst == "base-sepolia"
    assert args.dst_address == DESTINATION
    assert args.dry_run and not args.send


def test_parse_requires_mode():
    with pytest.raises(SystemExit):
        cli._parse_args(["transfer", "USDC", "1000"])
    with pytest.raises(SystemExit):
        cli._parse_args(["transfer", "USDC", "1000", "--dry-run", "--send"])


def test_executor_checks_chain(relayer_config, web3):
    web3.eth.chain_id = 1
    with pytest.raises(ValueError, match="Wrong chain"):
        cli.RelayerExecutor(rpc_url=None, private_key=RELAYER_KEY, config=relayer_config, web3_factory=lambda url: web3)


def test_executor_uses_config_rpc(relayer_config, web3):
    urls = []

    def factory(url):
        urls.append(url)
        return web3

    cli.RelayerExecutor(rpc_url=None, private_key=RELAYER_KEY, config=relayer_config, web3_factory=factory)
    assert urls == ["http://localhost:8545"]


def test_unsupported_command(executor):
    with pytest.raises(ValueError, match="Unsupported"):
        executor.prepare_plan(cli.RelayRequest(command="swap", token="USDC", amount=1))


def test_estimate_gas(executor):
    executor.contract.functions.receiveTokensWithPermit.return_value.estimate_gas.return_value = 90_000

    gas = executor.estimate_gas(_plan())

    assert gas.gas == 90_000
    assert gas.max_fee == 3 * 10**9
    assert gas.estimated_cost == 90_000 * 2 * 10**9


def test_estimate_gas_reports_revert(executor):
    call = executor.contract.functions.receiveAndBridge.return_value
    call.estimate_gas.side_effect = ContractLogicError("execution reverted: InvalidNonce")

    with pytest.raises(ValueError, match="would revert"):
        executor.estimate_gas(_plan(function_name="receiveAndBridge"))


def test_build_transaction_attaches_fee(executor, web3):
    web3.eth.get_transaction_count.return_value = 5
    call = executor.contract.functions.receiveAndBridge.return_value
    gas = cli.GasParameters(gas=100_000, gas_price=1, max_priority_fee=1, max_fee=2, estimated_cost=100_000)

    executor.build_transaction(_plan(function_name="receiveAndBridge", native_value=777), gas)

    tx = call.build_transaction.call_args.args[0]
    assert tx["value"] == 777
    assert tx["gas"] == 110_000
    assert tx["nonce"] == 5
    assert tx["chainId"] == CHAIN_ID


@pytest.fixture()
def sending(executor, web3):
    """Executor with a stub signer and a confirmed receipt for one bridge plan."""
    plan = _plan(function_name="receiveAndBridge", native_value=777, dst_eid=DST_EID, dst_address=DESTINATION, min_amount_ld=1)
    executor.prepare_plan = lambda request: plan
    executor.account = MagicMock()
    web3.eth.get_transaction_count.return_value = 2
    web3.eth.send_raw_transaction.return_value = bytes.fromhex(TX_HASH[2:])
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 10, "gasUsed": 80_000}
    events = executor.contract.events.BridgeInitiated.return_value
    events.process_receipt.return_value = [{"args": {"guid": b"\x01" * 32, "dstEid": DST_EID}}]
    return executor


def test_execute_send_signs_and_broadcasts(sending, web3, caplog):
    call = sending.contract.functions.receiveAndBridge.return_value
    call.estimate_gas.return_value = 90_000

    tx_hex = sending.execute_send(cli.RelayRequest(command="bridge", token="USDC", amount=1))

    assert tx_hex == TX_HASH[2:]
    assert call.build_transaction.call_args.args[0]["gas"] == 99_000
    sending.account.sign_transaction.assert_called_once_with(call.build_transaction.return_value)
    web3.eth.send_raw_transaction.assert_called_once_with(sending.account.sign_transaction.return_value.raw_transaction)
    sending.contract.events.BridgeInitiated.return_value.process_receipt.assert_called_once_with(
        web3.eth.wait_for_transaction_receipt.return_value
    )
    assert "guid=0x" + "01" * 32 in caplog.text


def test_execute_send_falls_back_when_estimation_fails(sending):
    call = sending.contract.functions.receiveAndBridge.return_value
    call.estimate_gas.side_effect = ContractLogicError("execution reverted")

    sending.execute_send(cli.RelayRequest(command="bridge", token="USDC", amount=1))

    assert call.build_transaction.call_args.args[0]["gas"] == int(cli.FALLBACK_GAS_LIMIT * 1.1)


def test_execute_send_failed_receipt(sending, web3):
    sending.contract.functions.receiveAndBridge.return_value.estimate_gas.return_value = 90_000
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 0}

    tx_hex = sending.execute_send(cli.RelayRequest(command="bridge", token="USDC", amount=1))

    assert tx_hex == TX_HASH[2:]
    sending.contract.events.BridgeInitiated.return_value.process_receipt.assert_not_called()


def test_native_funding_check(executor, web3):
    web3.eth.get_balance.return_value = 10**15
    assert not executor.check_native_funding(_plan(native_value=1)).has_sufficient_native


def test_status_command(monkeypatch, capsys, config_path):
    message = MessageStatus(
        guid="0x01", status="DELIVERED", src_eid=40161, dst_eid=40245, src_tx_hash=TX_HASH, dst_tx_hash="0x02"
    )
    monkeypatch.setattr(cli, "fetch_message_status", lambda config, tx_hash: [message])

    cli.main(["--config", str(config_path), "status", TX_HASH])

    assert "0x01 DELIVERED src=40161 dst=40245 dst_tx=0x02" in capsys.readouterr().out


def test_missing_private_key(monkeypatch, capsys, config_path):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(config_path), "transfer", "USDC", "1000", "--dry-run"])

    assert excinfo.value.code == 1
    assert "PRIVATE_KEY" in capsys.readouterr().out


def test_bridge_dry_run_dispatch(monkeypatch, config_path):
    monkeypatch.setenv("PRIVATE_KEY", RELAYER_KEY)
    monkeypatch.delenv("OWNER_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("RPC_URL", raising=False)
    executor_cls = MagicMock()
    monkeypatch.setattr(cli, "RelayerExecutor", executor_cls)

    cli.main(
        ["--config", str(config_path), "bridge", "USDC", "1000", "--dst", "base-sepolia", "--to", DESTINATION, "--dry-run"]
    )

    request = executor_cls.return_value.execute_dry_run.call_args.args[0]
    assert request.dst_eid == 40245
    assert request.dst_address == DESTINATION
    assert executor_cls.call_args.kwargs["owner_key"] is None
    executor_cls.return_value.execute_send.assert_not_called()
