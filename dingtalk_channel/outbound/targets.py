from __future__ import annotations
from dataclasses import dataclass
from dingtalk_channel.domain.models import ChatType

_CHANNEL_PREFIXES = ("dingtalk:", "ding:")
_KIND_PREFIXES = {
    "user:": ChatType.direct,
    "dm:": ChatType.direct,
    "group:": ChatType.group,
    "chat:": ChatType.group,
    "channel:": ChatType.group,
}
# DingTalk open conversation ids all start with "cid".
_GROUP_ID_PREFIX = "cid"

@dataclass(frozen=True)
class Target:
    chat_type: ChatType
    id: str

def parse_target(to: str) -> Target:
    """Parse an outbound address such as ``user:123``, ``group:cidXYZ`` or a bare id."""
    raw = (to or "").strip()
    for prefix in _CHANNEL_PREFIXES:
        if raw.lower().startswith(prefix):
            raw = raw[len(prefix):]
            break
    for prefix, kind in _KIND_PREFIXES.items():
        if raw.lower().startswith(prefix):
            ident = raw[len(prefix):].strip()
            if not ident:
                raise ValueError(f"empty DingTalk target: {to!r}")
            return Target(kind, ident)
    if not raw:
        raise ValueError(f"empty DingTalk target: {to!r}")
    if raw.startswith(_GROUP_ID_PREFIX):
        return Target(ChatType.group, raw)
    return Target(ChatType.direct, raw)
