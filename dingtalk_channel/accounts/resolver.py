"""Account resolution and configuration helpers for the DingTalk channel.

The host configuration is a plain mapping shaped like
``{"channels": {"dingtalk": {...}}}``. Helpers that "change" it return a new
mapping; nothing here writes configuration anywhere.
"""
from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping, Optional

from pydantic import SecretStr

from dingtalk_channel.config import CHANNEL_ID, DEFAULT_ACCOUNT_ID, DingtalkConfig
from dingtalk_channel.domain.models import (
    DmPolicy,
    GroupPolicy,
    PolicyConfig,
    ResolvedAccount,
)
from dingtalk_channel.observability.logging import get_logger
from dingtalk_channel.runtime import ChannelRuntime

log = get_logger("accounts")

_ID_PREFIXES = ("dingtalk:", "ding:", "user:")


def format_allow_from(entries: Iterable[str | int] | None) -> list[str]:
    """Normalize allowlist entries: stringify, trim, drop channel prefixes and empties, dedupe in order."""
    out: list[str] = []
    seen: set[str] = set()
    for raw in entries or ():
        entry = str(raw).strip()
        lowered = entry.lower()
        for prefix in _ID_PREFIXES:
            if lowered.startswith(prefix):
                entry = entry[len(prefix):].strip()
                lowered = entry.lower()
        if entry and entry not in seen:
            seen.add(entry)
            out.append(entry)
    return out


class AccountResolver:
    def __init__(self, runtime: ChannelRuntime):
        self.runtime = runtime

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def channel_config(self, cfg: Mapping[str, Any] | None) -> DingtalkConfig:
        section = ((cfg or {}).get("channels") or {}).get(CHANNEL_ID) or {}
        return DingtalkConfig.model_validate(section)

    def default_account_id(self) -> str:
        return DEFAULT_ACCOUNT_ID

    def list_account_ids(self, cfg: Mapping[str, Any] | None) -> list[str]:
        named = [aid for aid in self.channel_config(cfg).accounts if aid != DEFAULT_ACCOUNT_ID]
        return [DEFAULT_ACCOUNT_ID, *sorted(named)]

    def resolve_account(self, cfg: Mapping[str, Any] | None, account_id: Optional[str] = None) -> ResolvedAccount:
        account_id = account_id or DEFAULT_ACCOUNT_ID
        section = self.channel_config(cfg).for_account(account_id)
        client_id = (section.client_id or "").strip() or None
        client_secret = (section.client_secret or "").strip() or None
        text_chunk_limit = section.text_chunk_limit
        if "text_chunk_limit" not in section.model_fields_set:
            text_chunk_limit = self.runtime.settings.default_text_chunk_limit
        return ResolvedAccount(
            account_id=account_id,
            enabled=section.enabled,
            client_id=client_id,
            client_secret=SecretStr(client_secret) if client_secret else None,
            policy=PolicyConfig(
                dm_policy=DmPolicy(section.dm_policy),
                group_policy=GroupPolicy(section.group_policy),
                require_mention=section.require_mention,
                allow_from=frozenset(format_allow_from(section.allow_from)),
                group_allow_from=frozenset(format_allow_from(section.group_allow_from)),
            ),
            text_chunk_limit=text_chunk_limit,
            history_limit=section.history_limit,
        )

    def is_configured(self, account: ResolvedAccount) -> bool:
        return account.configured

    def describe_account(self, account: ResolvedAccount) -> dict[str, Any]:
        return {"accountId": account.account_id, "enabled": account.enabled, "configured": account.configured}

    def resolve_allow_from(self, cfg: Mapping[str, Any] | None, account_id: Optional[str] = None) -> list[str]:
        section = self.channel_config(cfg).for_account(account_id or DEFAULT_ACCOUNT_ID)
        return format_allow_from(section.allow_from)

    def collect_warnings(self, cfg: Mapping[str, Any] | None) -> list[str]:
        """Security warnings for every account, in account order."""
        warnings: list[str] = []
        for account_id in self.list_account_ids(cfg):
            account = self.resolve_account(cfg, account_id)
            if not account.enabled:
                continue
            where = f"channels.{CHANNEL_ID}" if account_id == DEFAULT_ACCOUNT_ID else f"channels.{CHANNEL_ID}.accounts.{account_id}"
            pol = account.policy
            if not account.configured:
                warnings.append(f"- DingTalk[{account_id}]: enabled but clientId/clientSecret are missing; set {where}.clientId and clientSecret.")
            if pol.dm_policy == DmPolicy.open:
                warnings.append(f'- DingTalk[{account_id}]: dmPolicy="open" lets anyone in the organization DM the bot. Prefer {where}.dmPolicy="pairing" or "allowlist".')
            elif pol.dm_policy == DmPolicy.allowlist and not pol.allow_from:
                warnings.append(f'- DingTalk[{account_id}]: dmPolicy="allowlist" with an empty allowFrom blocks every direct message.')
            if pol.group_policy == GroupPolicy.open and not pol.require_mention:
                warnings.append(f'- DingTalk[{account_id}]: groupPolicy="open" without requireMention lets any group member trigger the bot. Set {where}.requireMention=true or use an allowlist.')
            elif pol.group_policy == GroupPolicy.allowlist and not pol.group_allow_from:
                warnings.append(f'- DingTalk[{account_id}]: groupPolicy="allowlist" with an empty groupAllowFrom ignores every group.')
        return warnings

    # ------------------------------------------------------------------
    # Producing new configs
    # ------------------------------------------------------------------

    def set_account_enabled(self, cfg: Mapping[str, Any] | None, enabled: bool, account_id: Optional[str] = None) -> dict[str, Any]:
        return self.apply_account_config(cfg, {"enabled": enabled}, account_id)

    def apply_account_config(
        self, cfg: Mapping[str, Any] | None, values: Mapping[str, Any], account_id: Optional[str] = None
    ) -> dict[str, Any]:
        out = copy.deepcopy(dict(cfg or {}))
        channels = out.setdefault("channels", {})
        section = channels.setdefault(CHANNEL_ID, {})
        account_id = account_id or DEFAULT_ACCOUNT_ID
        if account_id == DEFAULT_ACCOUNT_ID:
            section.update(values)
        else:
            section.setdefault("accounts", {}).setdefault(account_id, {}).update(values)
        log.info("account_config_applied", account_id=account_id, keys=sorted(values))
        return out

    def delete_account(self, cfg: Mapping[str, Any] | None, account_id: Optional[str] = None) -> dict[str, Any]:
        out = copy.deepcopy(dict(cfg or {}))
        channels = out.get("channels") or {}
        account_id = account_id or DEFAULT_ACCOUNT_ID
        if account_id == DEFAULT_ACCOUNT_ID:
            channels.pop(CHANNEL_ID, None)
        else:
            accounts = (channels.get(CHANNEL_ID) or {}).get("accounts") or {}
            accounts.pop(account_id, None)
        log.info("account_deleted", account_id=account_id)
        return out
