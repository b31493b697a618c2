"""Domain models for the DingTalk channel."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, computed_field


# ============================================================================
# Enums
# ============================================================================


class ChatType(str, Enum):
    """Kind of conversation a message belongs to."""

    direct = "direct"
    group = "group"


class DmPolicy(str, Enum):
    """Direct message admission policy."""

    open = "open"
    pairing = "pairing"  # sender must have completed a pairing handshake
    allowlist = "allowlist"


class GroupPolicy(str, Enum):
    """Group conversation admission policy."""

    open = "open"
    allowlist = "allowlist"
    disabled = "disabled"


class DecisionReason(str, Enum):
    """Why an inbound conversation event was admitted or refused."""

    ok = "ok"
    disabled = "disabled"
    not_paired = "not-paired"
    not_allowlisted = "not-allowlisted"
    mention_required = "mention-required"


class ConnectionState(str, Enum):
    """Lifecycle state of a per-account gateway connection."""

    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    reconnecting = "reconnecting"
    closed = "closed"  # terminal


# ============================================================================
# Account / Policy Models
# ============================================================================


class PolicyConfig(BaseModel):
    """Admission rules for one account. Allowlists are sets of exact ids."""

    model_config = ConfigDict(frozen=True)

    dm_policy: DmPolicy = Field(default=DmPolicy.pairing)
    group_policy: GroupPolicy = Field(default=GroupPolicy.allowlist)
    require_mention: bool = Field(default=True)
    allow_from: frozenset[str] = Field(default_factory=frozenset, description="User ids allowed to DM the bot")
    group_allow_from: frozenset[str] = Field(default_factory=frozenset, description="Conversation ids allowed in groups")


class Credentials(BaseModel):
    """AppKey/AppSecret pair of a DingTalk robot application."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr


class ResolvedAccount(BaseModel):
    """Validated, read-only view of one configured DingTalk account."""

    model_config = ConfigDict(frozen=True)

    account_id: str = Field(description="Stable account key")
    enabled: bool = Field(default=True)
    client_id: Optional[str] = Field(default=None, description="DingTalk AppKey")
    client_secret: Optional[SecretStr] = Field(default=None, description="DingTalk AppSecret, never logged")
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    text_chunk_limit: int = Field(default=4000, ge=1)
    history_limit: int = Field(default=10, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def configured(self) -> bool:
        secret = self.client_secret.get_secret_value() if self.client_secret else ""
        return bool((self.client_id or "").strip() and secret.strip())

    def credentials(self) -> Credentials | None:
        if not self.configured:
            return None
        return Credentials(client_id=self.client_id.strip(), client_secret=self.client_secret)


# ============================================================================
# Conversation Models
# ============================================================================


class ConversationEvent(BaseModel):
    """Admission-relevant facts about one inbound message."""

    model_config = ConfigDict(frozen=True)

    chat_type: ChatType
    sender_id: str
    conversation_id: str
    mentioned: bool = Field(default=False, description="Bot was @-mentioned; only meaningful for groups")


class PolicyDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: DecisionReason


class InboundMessage(BaseModel):
    """Normalized DingTalk robot callback."""

    model_config = ConfigDict(frozen=True)

    event: ConversationEvent
    message_id: str
    text: str
    sender_name: Optional[str] = None
    conversation_title: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @property
    def reply_target(self) -> str:
        """Outbound target that answers in the conversation this message came from."""
        if self.event.chat_type == ChatType.group:
            return f"group:{self.event.conversation_id}"
        return f"user:{self.event.sender_id}"


# ============================================================================
# Delivery Models
# ============================================================================


class ProviderSendResult(BaseModel):
    """What the provider returns for one accepted message."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    conversation_id: str


class SendResult(BaseModel):
    """Outcome of one complete outbound delivery."""

    model_config = ConfigDict(frozen=True)

    channel: str = Field(default="dingtalk")
    message_id: str
    chat_id: str = Field(description="Echo of the target id")
    conversation_id: str
    chunks: int = Field(default=1, description="Provider messages that made up the delivery")
    via: str = Field(default="text", description="text | media")


class ConnectionStatus(BaseModel):
    """Snapshot handed to the status reporter on every state transition."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    state: ConnectionState
    reconnect_attempts: int = 0
    last_error: Optional[str] = None
    last_connected_at: Optional[datetime] = None
    last_transition_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def running(self) -> bool:
        return self.state not in (ConnectionState.disconnected, ConnectionState.closed)

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.connected
