"""Host capabilities handed explicitly to every channel component."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from dingtalk_channel.config import CHANNEL_ID, Settings
from dingtalk_channel.core.registry import ConnectionRegistry
from dingtalk_channel.domain.models import ChatType, InboundMessage, SendResult


@dataclass(frozen=True)
class AgentRoute:
    session_key: str
    account_id: str
    agent_id: Optional[str] = None


@dataclass(frozen=True)
class ReplyContext:
    """Everything the host needs to run the agent for one admitted message."""

    channel: str
    account_id: str
    route: AgentRoute
    message: InboundMessage


ReplyDeliverer = Callable[[str], Awaitable[SendResult]]
RouteResolver = Callable[[str, str, ChatType, str], AgentRoute]
ReplyDispatcher = Callable[[ReplyContext, ReplyDeliverer], Awaitable[Any]]


@dataclass
class ChannelRuntime:
    """Explicit runtime context.

    resolve_agent_route(channel, account_id, chat_type, peer_id) maps a
    conversation to a session; dispatch_reply(ctx, deliver) runs the agent and
    calls deliver(text) for each reply; is_paired(sender_id) backs the
    `pairing` DM policy. Any of them may be missing.
    """

    settings: Settings = field(default_factory=Settings)
    resolve_agent_route: Optional[RouteResolver] = None
    dispatch_reply: Optional[ReplyDispatcher] = None
    is_paired: Optional[Callable[[str], bool]] = None
    connections: ConnectionRegistry = field(default_factory=ConnectionRegistry)

    def route_for(self, account_id: str, chat_type: ChatType, peer_id: str) -> AgentRoute:
        if self.resolve_agent_route is not None:
            return self.resolve_agent_route(CHANNEL_ID, account_id, chat_type, peer_id)
        return AgentRoute(session_key=f"{CHANNEL_ID}:{account_id}:{chat_type.value}:{peer_id}", account_id=account_id)
