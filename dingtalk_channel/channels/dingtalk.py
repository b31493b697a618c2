from __future__ import annotations
import asyncio
from typing import Any, Mapping, Optional
from dingtalk_channel.accounts.resolver import AccountResolver
from dingtalk_channel.channels.base import ChannelAdapter
from dingtalk_channel.channels.inbound import InboundHandler
from dingtalk_channel.config import CHANNEL_ID
from dingtalk_channel.core.connection import GatewayConnection, StatusReporter
from dingtalk_channel.domain.errors import CredentialMissing
from dingtalk_channel.domain.models import SendResult
from dingtalk_channel.observability.logging import get_logger
from dingtalk_channel.outbound.dispatcher import OutboundDispatcher
from dingtalk_channel.provider.base import GatewayConnector, ProviderClient
from dingtalk_channel.provider.client import DingtalkApiClient
from dingtalk_channel.runtime import ChannelRuntime
from dingtalk_channel.security.policy_engine import AdmissionPolicy
from dingtalk_channel.text.chunker import chunk_markdown

log = get_logger("channel")

class DingtalkChannel(ChannelAdapter):
    """DingTalk channel: account resolution, admission, outbound delivery and
    the per-account gateway connection, wired to one explicit runtime.
    """
    channel_id = CHANNEL_ID

    def __init__(
        self,
        runtime: ChannelRuntime,
        provider: ProviderClient,
        connector: Optional[GatewayConnector] = None,
    ):
        self.runtime = runtime
        self.connector = connector
        self.accounts = AccountResolver(runtime)
        self.policy = AdmissionPolicy(pairing=self._is_paired)
        self.outbound = OutboundDispatcher(runtime, provider)
        self.inbound = InboundHandler(runtime, self.policy, self.outbound)

    def _is_paired(self, sender_id: str) -> bool:
        # read per call; the host may install the pairing store later
        lookup = self.runtime.is_paired
        return bool(lookup and lookup(sender_id))

    @classmethod
    def create(cls, runtime: ChannelRuntime, connector: Optional[GatewayConnector] = None) -> "DingtalkChannel":
        return cls(runtime, DingtalkApiClient(runtime.settings), connector)

    @staticmethod
    def chunker(text: str, limit: int) -> list[str]:
        return chunk_markdown(text, limit)

    async def start_account(
        self,
        cfg: Mapping[str, Any],
        account_id: Optional[str] = None,
        cancel_signal: Optional[asyncio.Event] = None,
        status_reporter: Optional[StatusReporter] = None,
    ) -> None:
        account = self.accounts.resolve_account(cfg, account_id)
        if not account.enabled:
            log.info("account_disabled", account_id=account.account_id)
            return
        if not account.configured:
            raise CredentialMissing(account.account_id)
        if self.connector is None:
            raise RuntimeError("DingtalkChannel has no gateway connector; pass one to start accounts")

        conn = GatewayConnection(self.runtime, self.connector, self.inbound.handle, status_reporter)
        log.info("account_starting", account_id=account.account_id)
        await conn.start(account, cancel_signal or asyncio.Event())
        log.info("account_stopped", account_id=account.account_id)

    async def send_text(self, cfg: Mapping[str, Any], to: str, text: str, account_id: Optional[str] = None) -> SendResult:
        account = self.accounts.resolve_account(cfg, account_id)
        return await self.outbound.send_text(account, to, text)

    async def send_media(
        self,
        cfg: Mapping[str, Any],
        to: str,
        text: Optional[str] = None,
        media_url: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> SendResult:
        account = self.accounts.resolve_account(cfg, account_id)
        return await self.outbound.send_media(account, to, text=text, media_url=media_url)
