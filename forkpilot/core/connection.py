"""Pilot connections and their forward migration chain.

A :class:`Connection` names the avatar (the account transactions execute
for), the pilot (the operator's own account), the authorizing module, the
chain, and which live-provider backend is in use.  Connections are immutable:
an edit produces a replacement.

Persisted connections may predate fields added later.  They are lazily
brought up to date by :data:`CONNECTION_MIGRATIONS`, an ordered list of
idempotent ``dict -> dict`` functions applied in registration order.
"""

from __future__ import annotations

import uuid
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from forkpilot.core.types import ModuleType, ProviderType


class Connection(BaseModel):
    """One avatar/pilot/module binding on a chain."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:21])
    label: str = ""
    chain_id: int = 1
    module_address: str = ""
    avatar_address: str = ""
    pilot_address: str = ""
    provider_type: ProviderType = ProviderType.WALLET_CONNECT
    module_type: ModuleType = ModuleType.ROLES
    role_id: str = ""

    def edit(self, **changes: Any) -> Connection:
        """Return a new connection with ``changes`` applied."""
        return self.model_validate({**self.model_dump(), **changes})


ConnectionMigration = Callable[[dict[str, Any]], dict[str, Any]]


def add_module_type(connection: dict[str, Any]) -> dict[str, Any]:
    return {**connection, "module_type": connection.get("module_type") or ModuleType.ROLES.value}


def add_role_id(connection: dict[str, Any]) -> dict[str, Any]:
    return {**connection, "role_id": connection.get("role_id") or ""}


CONNECTION_MIGRATIONS: list[ConnectionMigration] = [
    add_module_type,
    add_role_id,
]


def migrate_connection(raw: dict[str, Any]) -> Connection:
    """Apply every registered migration to one stored connection."""
    migrated = dict(raw)
    for migration in CONNECTION_MIGRATIONS:
        migrated = migration(migrated)
    return Connection.model_validate(migrated)


def migrate_connections(raw_connections: list[dict[str, Any]]) -> list[Connection]:
    """Apply all migrations to the given stored connections."""
    return [migrate_connection(raw) for raw in raw_connections]
