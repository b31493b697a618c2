from __future__ import annotations
from typing import TYPE_CHECKING
from dingtalk_channel.domain.errors import ConnectionAlreadyActive
from dingtalk_channel.domain.models import ConnectionState

if TYPE_CHECKING:
    from dingtalk_channel.core.connection import GatewayConnection

_IDLE = (ConnectionState.disconnected, ConnectionState.closed)

class ConnectionRegistry:
    """Tracks the live gateway connection of each account.

    Methods never await, so claims made from different tasks on one event loop
    cannot interleave.
    """
    def __init__(self):
        self._live: dict[str, GatewayConnection] = {}

    def claim(self, account_id: str, conn: GatewayConnection) -> None:
        holder = self._live.get(account_id)
        if holder is not None and holder is not conn and holder.state not in _IDLE:
            raise ConnectionAlreadyActive(account_id)
        self._live[account_id] = conn

    def release(self, account_id: str, conn: GatewayConnection) -> None:
        if self._live.get(account_id) is conn:
            del self._live[account_id]

    def get(self, account_id: str) -> GatewayConnection | None:
        return self._live.get(account_id)

    def active_accounts(self) -> list[str]:
        return sorted(aid for aid, c in self._live.items() if c.state not in _IDLE)
