"""High-level transaction inputs and their decode/encode.

A recorded transaction is represented as one of three inputs:

  - ``TransferFundsInput``  native-currency transfer, empty calldata
  - ``CallContractInput``   a contract call decoded against an ABI
  - ``RawTransactionInput`` anything that could not be decoded

Decoding is two-speed.  :func:`decode_single` is synchronous and never does
I/O, so it can run right before a transaction is forwarded.
:func:`decode_with_abi_lookup` upgrades a raw input once an ABI is found.

Values of ``bytes``-typed arguments are kept as ``0x`` hex strings so inputs
stay JSON-friendly; they are converted back when re-encoding.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Annotated, Any, Literal, Union

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.grammar import TupleType, parse as parse_abi_type
from pydantic import BaseModel, Field

from forkpilot.core.errors import AbiNotFoundError
from forkpilot.core.types import ZERO_ADDRESS, MetaTransaction, Operation, TransactionData
from forkpilot.decoding.abi import (
    AbiFetcher,
    calldata_selector,
    find_function,
    function_selector,
    function_signature,
    input_types,
)

logger = logging.getLogger(__name__)


class TransactionType(str, Enum):
    RAW = "raw"
    TRANSFER_FUNDS = "transferFunds"
    CALL_CONTRACT = "callContract"


class RawTransactionInput(BaseModel):
    type: Literal[TransactionType.RAW] = TransactionType.RAW
    id: int
    to: str
    value: int = 0
    data: str = "0x"


class TransferFundsInput(BaseModel):
    type: Literal[TransactionType.TRANSFER_FUNDS] = TransactionType.TRANSFER_FUNDS
    id: int
    to: str
    value: int = 0


class CallContractInput(BaseModel):
    type: Literal[TransactionType.CALL_CONTRACT] = TransactionType.CALL_CONTRACT
    id: int
    to: str
    value: int = 0
    abi: list[dict[str, Any]]
    function_signature: str
    input_values: list[Any] = Field(default_factory=list)

    @property
    def function_name(self) -> str:
        return self.function_signature.split("(", 1)[0]


TransactionInput = Annotated[
    Union[RawTransactionInput, TransferFundsInput, CallContractInput],
    Field(discriminator="type"),
]


# ── Value conversion ─────────────────────────────────────────────────────────


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity given as hex string, decimal string or int."""
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.lower().startswith("0x") else int(text)


def _is_empty(data: str | None) -> bool:
    return not data or data in ("0x", "0X")


def _hex_to_bytes(data: str) -> bytes:
    return bytes.fromhex(data[2:] if data.lower().startswith("0x") else data)


def _to_json_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    return value


def _to_abi_value(abi_type: Any, value: Any) -> Any:
    if abi_type.is_array:
        return [_to_abi_value(abi_type.item_type, v) for v in value]
    if isinstance(abi_type, TupleType):
        return tuple(_to_abi_value(c, v) for c, v in zip(abi_type.components, value))
    if abi_type.base == "bytes" and isinstance(value, str):
        return _hex_to_bytes(value)
    return value


# ── Decode ───────────────────────────────────────────────────────────────────


def decode_single(
    transaction: TransactionData,
    transaction_id: int,
    abi: list[dict[str, Any]] | None = None,
) -> RawTransactionInput | TransferFundsInput | CallContractInput:
    """Decode a raw transaction without any I/O.

    Without ``abi``, or when ``abi`` has no function matching the calldata,
    the result is a raw input.  Never raises on undecodable data.
    """
    # contract creation has no recipient
    to = transaction.get("to") or ZERO_ADDRESS
    value = parse_quantity(transaction.get("value"))
    data = transaction.get("data") or transaction.get("input") or "0x"

    if _is_empty(data):
        return TransferFundsInput(id=transaction_id, to=to, value=value)

    raw = RawTransactionInput(id=transaction_id, to=to, value=value, data=data)
    if not abi:
        return raw

    fragment = find_function(abi, calldata_selector(data))
    if fragment is None:
        return raw
    try:
        values = abi_decode(input_types(fragment), _hex_to_bytes(data)[4:])
    except Exception as exc:
        logger.debug("Calldata does not decode against %s: %s", function_signature(fragment), exc)
        return raw

    return CallContractInput(
        id=transaction_id,
        to=to,
        value=value,
        abi=[fragment],
        function_signature=function_signature(fragment),
        input_values=_to_json_value(list(values)),
    )


async def decode_with_abi_lookup(
    transaction: TransactionData,
    transaction_id: int,
    fetch_abi: AbiFetcher | None,
) -> TransferFundsInput | CallContractInput:
    """Fully decode a transaction, fetching the ABI it needs.

    Raises :class:`AbiNotFoundError` when the transaction stays raw.
    """
    fast = decode_single(transaction, transaction_id)
    if not isinstance(fast, RawTransactionInput):
        return fast
    if fetch_abi is None:
        raise AbiNotFoundError("No ABI source configured")

    abi = await fetch_abi(fast.to, fast.data)
    decoded = decode_single(transaction, transaction_id, abi=abi)
    if isinstance(decoded, RawTransactionInput):
        raise AbiNotFoundError(f"ABI for {fast.to} has no function {calldata_selector(fast.data)}")
    return decoded


# ── Encode ───────────────────────────────────────────────────────────────────


def encode_single(transaction_input: RawTransactionInput | TransferFundsInput | CallContractInput) -> MetaTransaction:
    """Turn an input back into the call the avatar executes."""
    value = hex(transaction_input.value)

    if isinstance(transaction_input, TransferFundsInput):
        return MetaTransaction(to=transaction_input.to, value=value, data="0x", operation=Operation.CALL)

    if isinstance(transaction_input, RawTransactionInput):
        return MetaTransaction(to=transaction_input.to, value=value, data=transaction_input.data, operation=Operation.CALL)

    signature = transaction_input.function_signature
    fragment = transaction_input.abi[0] if len(transaction_input.abi) == 1 else find_function(
        transaction_input.abi, function_selector(signature)
    )
    if fragment is None:
        raise ValueError(f"Function {signature} not in ABI")
    types = input_types(fragment)
    args = [_to_abi_value(parse_abi_type(t), v) for t, v in zip(types, transaction_input.input_values)]
    data = function_selector(signature) + abi_encode(types, args).hex()
    return MetaTransaction(to=transaction_input.to, value=value, data=data, operation=Operation.CALL)
