import pytest
from dingtalk_channel.accounts.resolver import AccountResolver, format_allow_from
from dingtalk_channel.config import Settings
from dingtalk_channel.domain.models import DmPolicy, GroupPolicy
from dingtalk_channel.runtime import ChannelRuntime

@pytest.fixture
def resolver():
    return AccountResolver(ChannelRuntime(settings=Settings(default_text_chunk_limit=4000)))

def cfg(**section):
    return {"channels": {"dingtalk": section}}

def test_defaults_for_empty_config(resolver):
    acc = resolver.resolve_account({})
    assert acc.account_id == "default"
    assert acc.enabled and not acc.configured
    assert acc.policy.dm_policy == DmPolicy.pairing
    assert acc.policy.group_policy == GroupPolicy.allowlist
    assert acc.policy.require_mention
    assert acc.text_chunk_limit == 4000

def test_configured_requires_both_credentials(resolver):
    assert resolver.resolve_account(cfg(clientId="id", clientSecret="secret")).configured
    assert not resolver.resolve_account(cfg(clientId="id", clientSecret="")).configured
    assert not resolver.resolve_account(cfg(clientId="id", clientSecret="   ")).configured
    assert not resolver.resolve_account(cfg(clientSecret="secret")).configured

def test_secret_is_masked(resolver):
    acc = resolver.resolve_account(cfg(clientId="id", clientSecret="hunter2"))
    assert "hunter2" not in repr(acc)
    assert "hunter2" not in str(acc.model_dump())
    assert resolver.describe_account(acc) == {"accountId": "default", "enabled": True, "configured": True}

def test_policy_fields_and_allowlists(resolver):
    acc = resolver.resolve_account(cfg(
        dmPolicy="allowlist",
        groupPolicy="open",
        requireMention=False,
        allowFrom=["u1", " u1 ", "dingtalk:u2", 123],
        groupAllowFrom=["cid1", "cid1"],
        textChunkLimit=1000,
        unknownKey=True,
    ))
    assert acc.policy.allow_from == frozenset({"u1", "u2", "123"})
    assert acc.policy.group_allow_from == frozenset({"cid1"})
    assert acc.policy.dm_policy == DmPolicy.allowlist and not acc.policy.require_mention
    assert acc.text_chunk_limit == 1000

def test_settings_default_chunk_limit_applies_when_unset():
    r = AccountResolver(ChannelRuntime(settings=Settings(default_text_chunk_limit=1500)))
    assert r.resolve_account(cfg()).text_chunk_limit == 1500
    assert r.resolve_account(cfg(textChunkLimit=300)).text_chunk_limit == 300

def test_named_accounts_override_top_level(resolver):
    c = cfg(clientId="a", clientSecret="b", dmPolicy="open", accounts={"ops": {"clientId": "ops-id", "dmPolicy": "allowlist"}})
    assert resolver.list_account_ids(c) == ["default", "ops"]
    ops = resolver.resolve_account(c, "ops")
    assert ops.account_id == "ops" and ops.client_id == "ops-id" and ops.configured
    assert ops.policy.dm_policy == DmPolicy.allowlist
    assert resolver.resolve_account(c).policy.dm_policy == DmPolicy.open

def test_format_allow_from():
    assert format_allow_from(["  a ", "ding:b", "user:c", "", 7, "a"]) == ["a", "b", "c", "7"]
    assert format_allow_from(None) == []

def test_set_enabled_and_delete_do_not_mutate(resolver):
    original = cfg(clientId="a", clientSecret="b")
    off = resolver.set_account_enabled(original, False)
    assert off["channels"]["dingtalk"]["enabled"] is False
    assert "enabled" not in original["channels"]["dingtalk"]
    assert not resolver.resolve_account(off).enabled

    gone = resolver.delete_account(original)
    assert "dingtalk" not in gone["channels"]
    assert "dingtalk" in original["channels"]

def test_apply_named_account_config(resolver):
    out = resolver.apply_account_config({}, {"clientId": "x", "clientSecret": "y"}, account_id="ops")
    assert out["channels"]["dingtalk"]["accounts"]["ops"] == {"clientId": "x", "clientSecret": "y"}
    assert resolver.resolve_account(out, "ops").configured
    assert resolver.delete_account(out, "ops")["channels"]["dingtalk"]["accounts"] == {}

def test_resolve_allow_from(resolver):
    assert resolver.resolve_allow_from(cfg(allowFrom=["x", "x", "y"])) == ["x", "y"]

def test_collect_warnings(resolver):
    warnings = resolver.collect_warnings(cfg(dmPolicy="open", groupPolicy="open", requireMention=False))
    joined = "\n".join(warnings)
    assert "clientId/clientSecret are missing" in joined
    assert 'dmPolicy="open"' in joined
    assert 'groupPolicy="open" without requireMention' in joined

def test_no_warnings_for_locked_down_account(resolver):
    c = cfg(clientId="a", clientSecret="b", dmPolicy="allowlist", allowFrom=["u1"], groupPolicy="disabled")
    assert resolver.collect_warnings(c) == []

def test_disabled_account_has_no_warnings(resolver):
    assert resolver.collect_warnings(cfg(enabled=False, dmPolicy="open")) == []
