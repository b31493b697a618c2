from __future__ import annotations
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CHANNEL_ID = "dingtalk"
DEFAULT_ACCOUNT_ID = "default"
# DingTalk rejects markdown messages above 4000 characters.
DEFAULT_TEXT_CHUNK_LIMIT = 4000
DEFAULT_HISTORY_LIMIT = 10

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DINGTALK_", env_file=".env", extra="ignore")

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True)

    # Provider HTTP API
    api_base_url: str = Field(default="https://api.dingtalk.com")
    http_timeout_s: float = Field(default=15.0)
    send_max_attempts: int = Field(default=3, description="Attempts per provider call for transient failures.")
    send_min_wait_s: float = Field(default=0.5)
    send_max_wait_s: float = Field(default=8.0)
    probe_media: bool = Field(default=True, description="HEAD the media URL before embedding it in a message.")

    # Gateway connection
    reconnect_min_delay_s: float = Field(default=1.0)
    reconnect_max_delay_s: float = Field(default=60.0)
    reconnect_factor: float = Field(default=2.0)

    # Outbound
    default_text_chunk_limit: int = Field(default=DEFAULT_TEXT_CHUNK_LIMIT, ge=1)

def load_settings() -> Settings:
    return Settings()


DmPolicyName = Literal["open", "pairing", "allowlist"]
GroupPolicyName = Literal["open", "allowlist", "disabled"]


class DingtalkAccountConfig(BaseModel):
    """Per-account overrides. Every field left unset falls back to the channel level."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: Optional[bool] = None
    client_id: Optional[str] = Field(default=None, alias="clientId")
    client_secret: Optional[str] = Field(default=None, alias="clientSecret")
    dm_policy: Optional[DmPolicyName] = Field(default=None, alias="dmPolicy")
    group_policy: Optional[GroupPolicyName] = Field(default=None, alias="groupPolicy")
    require_mention: Optional[bool] = Field(default=None, alias="requireMention")
    allow_from: Optional[list[str | int]] = Field(default=None, alias="allowFrom")
    group_allow_from: Optional[list[str | int]] = Field(default=None, alias="groupAllowFrom")
    history_limit: Optional[int] = Field(default=None, ge=0, alias="historyLimit")
    text_chunk_limit: Optional[int] = Field(default=None, ge=1, alias="textChunkLimit")


class DingtalkConfig(BaseModel):
    """The `channels.dingtalk` section of the host configuration.

    Unknown keys are dropped. Validation of the host document as a whole is the
    host's job; this model only applies defaults and basic bounds.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = True
    client_id: Optional[str] = Field(default=None, alias="clientId")
    client_secret: Optional[str] = Field(default=None, alias="clientSecret")
    dm_policy: DmPolicyName = Field(default="pairing", alias="dmPolicy")
    group_policy: GroupPolicyName = Field(default="allowlist", alias="groupPolicy")
    require_mention: bool = Field(default=True, alias="requireMention")
    allow_from: Optional[list[str | int]] = Field(default=None, alias="allowFrom")
    group_allow_from: Optional[list[str | int]] = Field(default=None, alias="groupAllowFrom")
    history_limit: int = Field(default=DEFAULT_HISTORY_LIMIT, ge=0, alias="historyLimit")
    text_chunk_limit: int = Field(default=DEFAULT_TEXT_CHUNK_LIMIT, ge=1, alias="textChunkLimit")
    accounts: dict[str, DingtalkAccountConfig] = Field(default_factory=dict)

    def for_account(self, account_id: str) -> "DingtalkConfig":
        """Channel-level values with the named account's overrides applied."""
        override = self.accounts.get(account_id)
        if override is None:
            return self
        return self.model_copy(update=override.model_dump(exclude_none=True, exclude_unset=True))
