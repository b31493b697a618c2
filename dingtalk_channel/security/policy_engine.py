from __future__ import annotations
from typing import Callable, Optional
from dingtalk_channel.domain.models import (
    ChatType,
    ConversationEvent,
    DecisionReason,
    DmPolicy,
    GroupPolicy,
    PolicyConfig,
    PolicyDecision,
)

PairingLookup = Callable[[str], bool]

_ALLOW = PolicyDecision(allowed=True, reason=DecisionReason.ok)

def _deny(reason: DecisionReason) -> PolicyDecision:
    return PolicyDecision(allowed=False, reason=reason)

class AdmissionPolicy:
    """Decides whether an inbound DingTalk conversation event is processed.

    A deny is a normal result, never an exception. The engine keeps no state:
    the only outside input is the pairing lookup used by the `pairing` DM mode.
    """
    def __init__(self, pairing: Optional[PairingLookup] = None):
        self.pairing = pairing

    def decide(self, event: ConversationEvent, policy: PolicyConfig) -> PolicyDecision:
        if event.chat_type == ChatType.direct:
            return self._decide_direct(event, policy)
        return self._decide_group(event, policy)

    def _decide_direct(self, event: ConversationEvent, policy: PolicyConfig) -> PolicyDecision:
        if policy.dm_policy == DmPolicy.open:
            return _ALLOW
        if policy.dm_policy == DmPolicy.allowlist:
            if event.sender_id in policy.allow_from:
                return _ALLOW
            return _deny(DecisionReason.not_allowlisted)
        # pairing: statically allowlisted senders count as paired
        if event.sender_id in policy.allow_from or self._is_paired(event.sender_id):
            return _ALLOW
        return _deny(DecisionReason.not_paired)

    def _decide_group(self, event: ConversationEvent, policy: PolicyConfig) -> PolicyDecision:
        if policy.group_policy == GroupPolicy.disabled:
            return _deny(DecisionReason.disabled)
        if policy.group_policy == GroupPolicy.allowlist and event.conversation_id not in policy.group_allow_from:
            return _deny(DecisionReason.not_allowlisted)
        if policy.require_mention and not event.mentioned:
            return _deny(DecisionReason.mention_required)
        return _ALLOW

    def _is_paired(self, sender_id: str) -> bool:
        if self.pairing is None:
            return False
        return bool(self.pairing(sender_id))
