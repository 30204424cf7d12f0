"""Batch encoding through the Safe ``MultiSend`` contract.

Each call is packed as::

    uint8 operation | address to | uint256 value | uint256 dataLength | bytes data

and the concatenation is passed to ``multiSend(bytes)``, which the avatar
executes as a delegate call.  A single call is never wrapped.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import to_canonical_address, to_checksum_address

from forkpilot.core.config import get_settings
from forkpilot.core.types import MetaTransaction, Operation
from forkpilot.decoding.abi import function_selector
from forkpilot.decoding.inputs import encode_single, parse_quantity

logger = logging.getLogger(__name__)

MULTI_SEND_SIGNATURE = "multiSend(bytes)"
MULTI_SEND_SELECTOR = function_selector(MULTI_SEND_SIGNATURE)


def format_value(value: Any) -> str:
    """Canonical hex quantity: no leading zeros, zero is ``0x0``."""
    return hex(parse_quantity(value))


def _data_bytes(data: str) -> bytes:
    if not data:
        return b""
    return bytes.fromhex(data[2:] if data.lower().startswith("0x") else data)


def encode_packed(transaction: MetaTransaction) -> bytes:
    data = _data_bytes(transaction.data)
    return (
        int(transaction.operation).to_bytes(1, "big")
        + to_canonical_address(transaction.to)
        + parse_quantity(transaction.value).to_bytes(32, "big")
        + len(data).to_bytes(32, "big")
        + data
    )


def encode_multi(transactions: Sequence[MetaTransaction], multisend_address: str | None = None) -> MetaTransaction:
    """Wrap ``transactions`` into one delegate call to ``multiSend``."""
    address = multisend_address or get_settings().multisend_address
    packed = b"".join(encode_packed(tx) for tx in transactions)
    return MetaTransaction(
        to=address,
        value="0x00",
        data=MULTI_SEND_SELECTOR + abi_encode(["bytes"], [packed]).hex(),
        operation=Operation.DELEGATE_CALL,
    )


def decode_multi(data: str) -> list[MetaTransaction]:
    """Split ``multiSend`` calldata back into its calls."""
    if data[:10].lower() != MULTI_SEND_SELECTOR:
        raise ValueError("Not a multiSend call")
    (packed,) = abi_decode(["bytes"], _data_bytes(data)[4:])

    transactions: list[MetaTransaction] = []
    offset = 0
    while offset < len(packed):
        operation = packed[offset]
        to = packed[offset + 1:offset + 21]
        value = int.from_bytes(packed[offset + 21:offset + 53], "big")
        length = int.from_bytes(packed[offset + 53:offset + 85], "big")
        body = packed[offset + 85:offset + 85 + length]
        if len(body) != length:
            raise ValueError("Truncated multiSend payload")
        transactions.append(MetaTransaction(
            to=to_checksum_address(to),
            value=hex(value),
            data="0x" + body.hex(),
            operation=Operation(operation),
        ))
        offset += 85 + length
    return transactions


def encode_batch(entries: Sequence[Any], multisend_address: str | None = None) -> MetaTransaction:
    """Encode ledger entries (or their inputs) into one meta transaction.

    The value of the result is always normalized with :func:`format_value`.
    """
    if not entries:
        raise ValueError("Nothing to batch")
    calls = [encode_single(getattr(entry, "input", entry)) for entry in entries]
    batch = calls[0] if len(calls) == 1 else encode_multi(calls, multisend_address)
    logger.debug("Encoded batch of %d call(s) to %s", len(calls), batch.to)
    return batch.model_copy(update={"value": format_value(batch.value)})
