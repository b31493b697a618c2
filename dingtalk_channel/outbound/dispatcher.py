from __future__ import annotations

from typing import Awaitable, Callable, Optional, Sequence

from dingtalk_channel.domain.errors import CredentialMissing, DeliveryFailed, ProviderRejected
from dingtalk_channel.domain.models import ChatType, Credentials, ProviderSendResult, ResolvedAccount, SendResult
from dingtalk_channel.observability import metrics
from dingtalk_channel.observability.logging import get_logger
from dingtalk_channel.outbound.targets import Target, parse_target
from dingtalk_channel.provider.base import ProviderClient
from dingtalk_channel.runtime import ChannelRuntime
from dingtalk_channel.text.chunker import chunk_markdown

log = get_logger("outbound")

Step = Callable[[], Awaitable[ProviderSendResult]]


class OutboundDispatcher:
    """Delivers agent replies to DingTalk.

    Text is chunked to the account's limit and sent one chunk at a time, in
    order. A failed chunk stops the delivery and raises DeliveryFailed with the
    number of chunks already delivered; nothing is retried or recalled here.
    Media gets one attempt and, on a provider rejection, one fallback to text.
    """

    def __init__(self, runtime: ChannelRuntime, provider: ProviderClient):
        self.runtime = runtime
        self.provider = provider

    async def send_text(self, account: ResolvedAccount, target: str, text: str) -> SendResult:
        creds = self._credentials(account)
        dest = parse_target(target)
        if not text or not text.strip():
            raise ValueError("refusing to send an empty DingTalk message")

        chunks = chunk_markdown(text, account.text_chunk_limit)
        steps = [self._text_step(creds, dest, chunk) for chunk in chunks]
        last = await self._run_pipeline(steps, target)
        log.info("outbound_text_sent", target=target, chunks=len(chunks), message_id=last.message_id)
        return SendResult(
            message_id=last.message_id,
            chat_id=dest.id,
            conversation_id=last.conversation_id,
            chunks=len(chunks),
            via="text",
        )

    async def send_media(
        self,
        account: ResolvedAccount,
        target: str,
        text: Optional[str] = None,
        media_url: Optional[str] = None,
    ) -> SendResult:
        creds = self._credentials(account)
        if not media_url:
            return await self.send_text(account, target, text or "")
        dest = parse_target(target)

        try:
            res = await self.provider.send_media(creds, dest.chat_type, dest.id, media_url, text or None)
        except ProviderRejected as e:
            metrics.outbound_messages.labels(kind="media", outcome="failed").inc()
            if not text or not text.strip():
                log.warning("outbound_media_failed", target=target, error=str(e))
                raise
            log.warning("outbound_media_fallback", target=target, error=str(e))
            metrics.outbound_fallbacks.inc()
            return await self.send_text(account, target, text)

        metrics.outbound_messages.labels(kind="media", outcome="ok").inc()
        log.info("outbound_media_sent", target=target, message_id=res.message_id)
        return SendResult(
            message_id=res.message_id,
            chat_id=dest.id,
            conversation_id=res.conversation_id,
            chunks=1,
            via="media",
        )

    def _credentials(self, account: ResolvedAccount) -> Credentials:
        creds = account.credentials()
        if creds is None:
            raise CredentialMissing(account.account_id)
        return creds

    def _text_step(self, creds: Credentials, dest: Target, chunk: str) -> Step:
        if dest.chat_type == ChatType.group:
            return lambda: self.provider.send_group(creds, dest.id, chunk)
        return lambda: self.provider.send_direct(creds, dest.id, chunk)

    async def _run_pipeline(self, steps: Sequence[Step], target: str) -> ProviderSendResult:
        if not steps:
            raise ValueError(f"nothing to deliver to {target}")
        results: list[ProviderSendResult] = []
        for delivered, step in enumerate(steps):
            try:
                results.append(await step())
            except Exception as e:
                metrics.outbound_messages.labels(kind="text", outcome="failed").inc()
                log.warning(
                    "outbound_chunk_failed",
                    target=target,
                    delivered=delivered,
                    total=len(steps),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise DeliveryFailed(delivered, len(steps), target) from e
            metrics.outbound_messages.labels(kind="text", outcome="ok").inc()
        return results[-1]
