"""Provider that submits for real, through the authorizing module."""

from __future__ import annotations

import logging
from typing import Any

from eth_abi import encode as abi_encode
from eth_utils import to_checksum_address

from forkpilot.core.connection import Connection
from forkpilot.core.types import (
    ACCOUNT_METHODS,
    Eip1193Provider,
    MetaTransaction,
    ModuleType,
    Operation,
    TransactionData,
)
from forkpilot.decoding.abi import function_selector
from forkpilot.decoding.inputs import parse_quantity

logger = logging.getLogger(__name__)

EXEC_WITH_ROLE_SIGNATURE = "execTransactionWithRole(address,uint256,bytes,uint8,uint16,bool)"
EXEC_FROM_MODULE_SIGNATURE = "execTransactionFromModule(address,uint256,bytes,uint8)"


def _data_bytes(data: str | None) -> bytes:
    if not data:
        return b""
    return bytes.fromhex(data[2:] if data.lower().startswith("0x") else data)


def wrap_request(transaction: TransactionData | MetaTransaction, connection: Connection) -> TransactionData:
    """Encode ``transaction`` as a module call made by the pilot.

    The result is what the pilot signs: a zero-value call to the module
    that has the avatar execute ``transaction``.
    """
    if isinstance(transaction, MetaTransaction):
        transaction = transaction.to_transaction()

    sender = transaction.get("from")
    if sender and sender.lower() != connection.avatar_address.lower():
        raise ValueError(f"Unexpected sender {sender}, expected avatar {connection.avatar_address}")

    to = to_checksum_address(transaction["to"])
    value = parse_quantity(transaction.get("value"))
    data = _data_bytes(transaction.get("data"))
    operation = int(transaction.get("operation", Operation.CALL))

    if connection.module_type == ModuleType.ROLES:
        signature = EXEC_WITH_ROLE_SIGNATURE
        args = abi_encode(
            ["address", "uint256", "bytes", "uint8", "uint16", "bool"],
            [to, value, data, operation, int(connection.role_id or 0), True],
        )
    else:
        signature = EXEC_FROM_MODULE_SIGNATURE
        args = abi_encode(["address", "uint256", "bytes", "uint8"], [to, value, data, operation])

    return {
        "from": connection.pilot_address,
        "to": connection.module_address,
        "data": function_selector(signature) + args.hex(),
        "value": "0x0",
    }


class WrappingProvider:
    """Live provider that presents the avatar as the connected account.

    Sends go out via ``provider``, which is expected to do the module
    wrapping and signing itself.
    """

    def __init__(self, provider: Eip1193Provider, connection: Connection) -> None:
        self.provider = provider
        self.connection = connection

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        if method in ACCOUNT_METHODS:
            return [self.connection.avatar_address]

        if method == "eth_sendTransaction":
            params = list(params or [{}])
            params[0] = {**params[0], "from": self.connection.avatar_address}
            logger.info(
                "Submitting transaction through module %s", self.connection.module_address,
                extra={"chain_id": self.connection.chain_id, "method": method},
            )

        return await self.provider.request(method, params)
