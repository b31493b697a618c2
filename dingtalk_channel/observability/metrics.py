from __future__ import annotations
from prometheus_client import Counter, Gauge

admission_decisions = Counter("dingtalk_admission_decisions_total", "Inbound admission decisions", ["chat_type", "reason"])
inbound_messages = Counter("dingtalk_inbound_messages_total", "Inbound provider events", ["chat_type"])
outbound_messages = Counter("dingtalk_outbound_messages_total", "Provider send calls", ["kind", "outcome"])
outbound_fallbacks = Counter("dingtalk_outbound_fallbacks_total", "Media sends that fell back to text")
connection_state = Gauge("dingtalk_connection_state", "1 for the current gateway connection state of an account", ["account_id", "state"])
reconnects = Counter("dingtalk_reconnects_total", "Gateway reconnect attempts", ["account_id"])
