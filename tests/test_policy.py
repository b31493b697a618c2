import pytest
from dingtalk_channel.domain.models import ChatType, ConversationEvent, DecisionReason, PolicyConfig
from dingtalk_channel.security.policy_engine import AdmissionPolicy

def dm(sender="u1"):
    return ConversationEvent(chat_type=ChatType.direct, sender_id=sender, conversation_id=f"conv-{sender}")

def group(conv="cid1", mentioned=False, sender="u9"):
    return ConversationEvent(chat_type=ChatType.group, sender_id=sender, conversation_id=conv, mentioned=mentioned)

def test_dm_open_allows_anyone():
    d = AdmissionPolicy().decide(dm("stranger"), PolicyConfig(dm_policy="open"))
    assert d.allowed and d.reason == DecisionReason.ok

def test_dm_allowlist():
    pol = PolicyConfig(dm_policy="allowlist", allow_from=frozenset({"u1"}))
    pe = AdmissionPolicy()
    assert pe.decide(dm("u1"), pol).allowed
    d = pe.decide(dm("u2"), pol)
    assert not d.allowed and d.reason == DecisionReason.not_allowlisted

def test_dm_pairing_uses_lookup():
    pol = PolicyConfig(dm_policy="pairing")
    pe = AdmissionPolicy(pairing=lambda sender: sender == "paired")
    assert pe.decide(dm("paired"), pol).allowed
    d = pe.decide(dm("other"), pol)
    assert not d.allowed and d.reason == DecisionReason.not_paired

def test_dm_pairing_without_lookup_denies_unless_allowlisted():
    pol = PolicyConfig(dm_policy="pairing", allow_from=frozenset({"boss"}))
    pe = AdmissionPolicy()
    assert pe.decide(dm("boss"), pol).allowed
    assert pe.decide(dm("u1"), pol).reason == DecisionReason.not_paired

def test_group_open_requires_mention():
    pol = PolicyConfig(group_policy="open", require_mention=True)
    pe = AdmissionPolicy()
    d = pe.decide(group(mentioned=False), pol)
    assert not d.allowed and d.reason == DecisionReason.mention_required
    assert pe.decide(group(mentioned=True), pol).allowed

def test_group_open_without_mention_requirement():
    pol = PolicyConfig(group_policy="open", require_mention=False)
    assert AdmissionPolicy().decide(group(mentioned=False), pol).allowed

@pytest.mark.parametrize("mentioned", [True, False])
def test_group_disabled_always_denied(mentioned):
    pol = PolicyConfig(group_policy="disabled", group_allow_from=frozenset({"cid1"}), require_mention=False)
    d = AdmissionPolicy().decide(group("cid1", mentioned=mentioned), pol)
    assert not d.allowed and d.reason == DecisionReason.disabled

def test_group_allowlist_checks_membership_before_mention():
    pol = PolicyConfig(group_policy="allowlist", group_allow_from=frozenset({"cid1"}), require_mention=True)
    pe = AdmissionPolicy()
    assert pe.decide(group("cid2", mentioned=False), pol).reason == DecisionReason.not_allowlisted
    assert pe.decide(group("cid1", mentioned=False), pol).reason == DecisionReason.mention_required
    assert pe.decide(group("cid1", mentioned=True), pol).allowed

def test_membership_is_exact_match():
    pol = PolicyConfig(dm_policy="allowlist", allow_from=frozenset({"U1"}))
    assert not AdmissionPolicy().decide(dm("u1"), pol).allowed

def test_decide_is_idempotent_and_pure():
    pol = PolicyConfig(group_policy="allowlist", group_allow_from=frozenset({"cid1"}))
    ev = group("cid1", mentioned=True)
    pe = AdmissionPolicy()
    first = pe.decide(ev, pol)
    assert pe.decide(ev, pol) == first
    assert pol.group_allow_from == frozenset({"cid1"})
