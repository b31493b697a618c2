from __future__ import annotations
from typing import Any, Mapping, Optional
from pydantic import ValidationError
from dingtalk_channel.config import CHANNEL_ID
from dingtalk_channel.domain.models import ChatType, ConversationEvent, InboundMessage, ResolvedAccount, SendResult
from dingtalk_channel.observability import metrics
from dingtalk_channel.observability.logging import get_logger
from dingtalk_channel.outbound.dispatcher import OutboundDispatcher
from dingtalk_channel.runtime import ChannelRuntime, ReplyContext
from dingtalk_channel.security.policy_engine import AdmissionPolicy

log = get_logger("inbound")

# conversationType in DingTalk robot callbacks
_DIRECT = "1"
_GROUP = "2"

def parse_callback(payload: Mapping[str, Any]) -> Optional[InboundMessage]:
    """Map a DingTalk robot callback to an InboundMessage. Returns None for anything unusable."""
    conv_type = str(payload.get("conversationType") or "")
    if conv_type not in (_DIRECT, _GROUP):
        return None
    chat_type = ChatType.direct if conv_type == _DIRECT else ChatType.group
    sender_id = str(payload.get("senderStaffId") or payload.get("senderId") or "").strip()
    conversation_id = str(payload.get("conversationId") or "").strip()
    if not sender_id or not conversation_id:
        return None

    text = ""
    if payload.get("msgtype", "text") == "text":
        text = str((payload.get("text") or {}).get("content") or "").strip()

    try:
        return InboundMessage(
            event=ConversationEvent(
                chat_type=chat_type,
                sender_id=sender_id,
                conversation_id=conversation_id,
                mentioned=bool(payload.get("isInAtList")),
            ),
            message_id=str(payload.get("msgId") or ""),
            text=text,
            sender_name=payload.get("senderNick"),
            conversation_title=payload.get("conversationTitle"),
            raw=dict(payload),
        )
    except ValidationError:
        return None

class InboundHandler:
    """Admission check and agent dispatch for provider events of one channel.

    A denied message produces no reply and no error, only a log line and a
    metric. Admitted messages are routed through the runtime and the reply is
    delivered with OutboundDispatcher.send_text.
    """
    def __init__(self, runtime: ChannelRuntime, policy: AdmissionPolicy, dispatcher: OutboundDispatcher):
        self.runtime = runtime
        self.policy = policy
        self.dispatcher = dispatcher

    async def handle(self, account: ResolvedAccount, payload: Mapping[str, Any]) -> bool:
        msg = parse_callback(payload)
        if msg is None:
            log.warning("inbound_unparseable", keys=sorted(payload.keys()))
            return False

        ev = msg.event
        metrics.inbound_messages.labels(chat_type=ev.chat_type.value).inc()
        decision = self.policy.decide(ev, account.policy)
        metrics.admission_decisions.labels(chat_type=ev.chat_type.value, reason=decision.reason.value).inc()
        if not decision.allowed:
            log.info(
                "inbound_denied",
                chat_type=ev.chat_type.value,
                sender_id=ev.sender_id,
                conversation_id=ev.conversation_id,
                reason=decision.reason.value,
            )
            return False
        if not msg.text:
            log.debug("inbound_empty", message_id=msg.message_id)
            return False
        if self.runtime.dispatch_reply is None:
            log.warning("inbound_no_dispatcher", message_id=msg.message_id)
            return False

        peer_id = ev.sender_id if ev.chat_type == ChatType.direct else ev.conversation_id
        route = self.runtime.route_for(account.account_id, ev.chat_type, peer_id)
        ctx = ReplyContext(channel=CHANNEL_ID, account_id=account.account_id, route=route, message=msg)
        target = msg.reply_target

        async def deliver(text: str) -> SendResult:
            return await self.dispatcher.send_text(account, target, text)

        log.info("inbound_dispatch", session_key=route.session_key, message_id=msg.message_id)
        await self.runtime.dispatch_reply(ctx, deliver)
        return True
