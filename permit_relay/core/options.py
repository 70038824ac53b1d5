"""LayerZero V2 type-3 executor options.

Layout::

    uint16 optionsType (= 3)
    repeated:
        uint8  workerId    (1 = executor)
        uint16 optionSize  (option type byte + payload)
        uint8  optionType
        bytes  payload

``build_lz_receive_options(60_000)`` gives
``0x0003010011010000000000000000000000000000ea60``, the options blob used by
the bridge scripts to pay for 60k gas of ``lzReceive`` on the destination.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from permit_relay.core.errors import InvalidOptions

TYPE_3 = 3
EXECUTOR_WORKER_ID = 1

OPTION_TYPE_LZRECEIVE = 1
OPTION_TYPE_NATIVE_DROP = 2
OPTION_TYPE_LZCOMPOSE = 3
OPTION_TYPE_ORDERED_EXECUTION = 4

_MAX_UINT128 = 2**128 - 1


@dataclass(frozen=True)
class ExecutorOptions:
    """Decoded executor options, aggregated the way the executor sums them."""

    lz_receive_gas: int = 0
    lz_receive_value: int = 0
    native_drops: Tuple[Tuple[int, bytes], ...] = field(default_factory=tuple)
    ordered: bool = False


def _u128(value: int, name: str) -> bytes:
    if value < 0 or value > _MAX_UINT128:
        raise ValueError(f"{name} does not fit uint128: {value}")
    return value.to_bytes(16, "big")


def _executor_option(option_type: int, payload: bytes) -> bytes:
    size = len(payload) + 1
    return bytes([EXECUTOR_WORKER_ID]) + size.to_bytes(2, "big") + bytes([option_type]) + payload


def new_options() -> bytes:
    return TYPE_3.to_bytes(2, "big")


def add_lz_receive_option(options: bytes, gas: int, value: int = 0) -> bytes:
    payload = _u128(gas, "gas")
    if value:
        payload += _u128(value, "value")
    return options + _executor_option(OPTION_TYPE_LZRECEIVE, payload)


def add_native_drop_option(options: bytes, amount: int, receiver: bytes) -> bytes:
    if len(receiver) != 32:
        raise ValueError("Native drop receiver must be 32 bytes")
    return options + _executor_option(OPTION_TYPE_NATIVE_DROP, _u128(amount, "amount") + receiver)


def build_lz_receive_options(gas: int, value: int = 0) -> bytes:
    """Options carrying a single ``lzReceive`` gas (and optional value) grant."""
    return add_lz_receive_option(new_options(), gas, value)


def parse_executor_options(data: bytes) -> ExecutorOptions:
    """Decode type-3 options; raises :py:class:`InvalidOptions` on malformed input.

    Empty options decode to an empty :py:class:`ExecutorOptions`.
    """
    if not data:
        return ExecutorOptions()
    if len(data) < 2 or int.from_bytes(data[:2], "big") != TYPE_3:
        raise InvalidOptions(data)

    gas = 0
    value = 0
    ordered = False
    drops: List[Tuple[int, bytes]] = []
    cursor = 2
    while cursor < len(data):
        if cursor + 4 > len(data):
            raise InvalidOptions(data)
        worker_id = data[cursor]
        size = int.from_bytes(data[cursor + 1 : cursor + 3], "big")
        option_type = data[cursor + 3]
        payload = data[cursor + 4 : cursor + 3 + size]
        if size == 0 or cursor + 3 + size > len(data):
            raise InvalidOptions(data)
        cursor += 3 + size

        if worker_id != EXECUTOR_WORKER_ID:
            # DVN options are forwarded untouched
            continue
        if option_type == OPTION_TYPE_LZRECEIVE:
            if len(payload) not in (16, 32):
                raise InvalidOptions(data)
            gas += int.from_bytes(payload[:16], "big")
            if len(payload) == 32:
                value += int.from_bytes(payload[16:], "big")
        elif option_type == OPTION_TYPE_NATIVE_DROP:
            if len(payload) != 48:
                raise InvalidOptions(data)
            drops.append((int.from_bytes(payload[:16], "big"), bytes(payload[16:])))
        elif option_type == OPTION_TYPE_ORDERED_EXECUTION:
            ordered = True
        elif option_type == OPTION_TYPE_LZCOMPOSE:
            continue
        else:
            raise InvalidOptions(data)

    return ExecutorOptions(lz_receive_gas=gas, lz_receive_value=value, native_drops=tuple(drops), ordered=ordered)


__all__ = [
    "ExecutorOptions",
    "add_lz_receive_option",
    "add_native_drop_option",
    "build_lz_receive_options",
    "new_options",
    "parse_executor_options",
]
