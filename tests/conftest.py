from __future__ import annotations

import pytest
from pydantic import SecretStr

from dingtalk_channel.config import Settings
from dingtalk_channel.domain.errors import ProviderRejected
from dingtalk_channel.domain.models import ProviderSendResult, ResolvedAccount
from dingtalk_channel.runtime import ChannelRuntime


class FakeProvider:
    """Records every send; fails the calls listed in `fail_on` (1-based call numbers) or all media."""

    def __init__(self, fail_on=(), fail_media=False):
        self.calls: list[tuple] = []
        self.fail_on = set(fail_on)
        self.fail_media = fail_media
        self.closed = False

    def _result(self, conversation_id):
        return ProviderSendResult(message_id=f"m{len(self.calls)}", conversation_id=conversation_id)

    async def aclose(self):
        self.closed = True

    async def send_direct(self, credentials, user_id, markdown):
        self.calls.append(("direct", user_id, markdown))
        if len(self.calls) in self.fail_on:
            raise ProviderRejected("boom", status_code=400)
        return self._result(user_id)

    async def send_group(self, credentials, conversation_id, markdown):
        self.calls.append(("group", conversation_id, markdown))
        if len(self.calls) in self.fail_on:
            raise ProviderRejected("boom", status_code=400)
        return self._result(conversation_id)

    async def send_media(self, credentials, chat_type, target_id, media_url, caption=None):
        self.calls.append(("media", target_id, media_url))
        if self.fail_media:
            raise ProviderRejected(f"media url unreachable: {media_url}")
        return self._result(target_id)


@pytest.fixture
def runtime():
    return ChannelRuntime(settings=Settings(reconnect_min_delay_s=0.01, reconnect_max_delay_s=0.05))


@pytest.fixture
def account():
    return ResolvedAccount(account_id="default", client_id="app-key", client_secret=SecretStr("app-secret"), text_chunk_limit=20)


@pytest.fixture
def unconfigured_account():
    return ResolvedAccount(account_id="default", client_id="app-key", client_secret=None)
