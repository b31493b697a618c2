"""Capabilities the channel consumes from the DingTalk provider.

The HTTP send side has a concrete implementation in `provider.client`. The
long-lived stream connection is supplied by the host as a GatewayConnector.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Optional, Protocol

from dingtalk_channel.domain.models import ChatType, Credentials, ProviderSendResult


class ProviderClient(Protocol):
    async def send_direct(self, credentials: Credentials, user_id: str, markdown: str) -> ProviderSendResult:
        ...

    async def send_group(self, credentials: Credentials, conversation_id: str, markdown: str) -> ProviderSendResult:
        ...

    async def send_media(
        self,
        credentials: Credentials,
        chat_type: ChatType,
        target_id: str,
        media_url: str,
        caption: Optional[str] = None,
    ) -> ProviderSendResult:
        ...


class ProviderSession(Protocol):
    """One live stream connection.

    `events()` yields raw robot callback payloads. Returning normally or raising
    means the provider dropped the connection.
    """

    def events(self) -> AsyncIterator[dict[str, Any]]:
        ...

    async def close(self) -> None:
        ...


class GatewayConnector(Protocol):
    async def connect(self, credentials: Credentials) -> ProviderSession:
        """Perform the handshake; raise on failure."""
        ...
