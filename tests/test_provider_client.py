import json
import httpx
import pytest
from pydantic import SecretStr
from dingtalk_channel.config import Settings
from dingtalk_channel.domain.errors import ProviderRejected
from dingtalk_channel.domain.models import ChatType, Credentials
from dingtalk_channel.provider.client import DingtalkApiClient, markdown_title, media_markdown

CREDS = Credentials(client_id="robot-key", client_secret=SecretStr("robot-secret"))


class Recorder:
    """MockTransport handler: answers the token endpoint and replays `responses` for everything else."""

    def __init__(self, *responses):
        self.requests = []
        self.responses = list(responses)
        self.token_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1.0/oauth2/accessToken":
            self.token_calls += 1
            return httpx.Response(200, json={"accessToken": "tok-1", "expireIn": 7200})
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={"processQueryKey": "pqk-1"})


def make_client(handler, **overrides):
    settings = Settings(send_min_wait_s=0, send_max_wait_s=0, **overrides)
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=settings.api_base_url)
    return DingtalkApiClient(settings, http=http)


@pytest.mark.asyncio
async def test_send_direct_request_shape():
    rec = Recorder()
    client = make_client(rec)
    res = await client.send_direct(CREDS, "staff1", "# Hello\nworld")
    await client.aclose()

    assert res.message_id == "pqk-1" and res.conversation_id == "staff1"
    token_req, send_req = rec.requests
    assert json.loads(token_req.content) == {"appKey": "robot-key", "appSecret": "robot-secret"}
    assert send_req.url.path == "/v1.0/robot/oToMessages/batchSend"
    assert send_req.headers["x-acs-dingtalk-access-token"] == "tok-1"
    body = json.loads(send_req.content)
    assert body["robotCode"] == "robot-key" and body["userIds"] == ["staff1"]
    assert body["msgKey"] == "sampleMarkdown"
    assert json.loads(body["msgParam"]) == {"title": "Hello", "text": "# Hello\nworld"}


@pytest.mark.asyncio
async def test_send_group_and_token_is_cached():
    rec = Recorder()
    client = make_client(rec)
    await client.send_group(CREDS, "cidG", "one")
    await client.send_group(CREDS, "cidG", "two")
    await client.aclose()

    assert rec.token_calls == 1
    sends = [r for r in rec.requests if r.url.path == "/v1.0/robot/groupMessages/send"]
    assert [json.loads(r.content)["openConversationId"] for r in sends] == ["cidG", "cidG"]


@pytest.mark.asyncio
async def test_client_error_is_rejected_without_retry():
    rec = Recorder(httpx.Response(400, json={"code": "invalidParameter", "message": "bad user"}))
    client = make_client(rec)
    with pytest.raises(ProviderRejected) as exc:
        await client.send_direct(CREDS, "nobody", "hi")
    await client.aclose()
    assert exc.value.status_code == 400 and exc.value.code == "invalidParameter"
    assert "bad user" in str(exc.value)
    assert len(rec.requests) == 2


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_succeed():
    rec = Recorder(httpx.Response(503), httpx.Response(429))
    client = make_client(rec, send_max_attempts=3)
    res = await client.send_direct(CREDS, "staff1", "hi")
    await client.aclose()
    assert res.message_id == "pqk-1"
    assert len(rec.requests) == 4  # token + 3 attempts


@pytest.mark.asyncio
async def test_exhausted_retries_surface_as_rejected():
    rec = Recorder(*[httpx.Response(502) for _ in range(3)])
    client = make_client(rec, send_max_attempts=2)
    with pytest.raises(ProviderRejected) as exc:
        await client.send_group(CREDS, "cidG", "hi")
    await client.aclose()
    assert exc.value.status_code == 502
    assert len(rec.requests) == 3  # token + 2 attempts


@pytest.mark.asyncio
async def test_unreachable_media_is_rejected_before_sending():
    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(404)
        return Recorder()(request)

    client = make_client(handler)
    with pytest.raises(ProviderRejected, match="unreachable"):
        await client.send_media(CREDS, ChatType.direct, "staff1", "https://files.example/a.png", "look")
    await client.aclose()


@pytest.mark.asyncio
async def test_media_is_sent_as_markdown_embed():
    rec = Recorder()

    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(200)
        return rec(request)

    client = make_client(handler)
    await client.send_media(CREDS, ChatType.group, "cidG", "https://files.example/a.png", "look")
    await client.aclose()
    param = json.loads(json.loads(rec.requests[-1].content)["msgParam"])
    assert param["text"] == "look\n\n![a.png](https://files.example/a.png)"


def test_markdown_title():
    assert markdown_title("\n## **Build** report\nbody") == "Build report"
    assert markdown_title("   ") == "DingTalk"
    assert len(markdown_title("x" * 100)) == 20


def test_media_markdown():
    assert media_markdown("https://h/doc.pdf") == "[doc.pdf](https://h/doc.pdf)"
    assert media_markdown("https://h/p.JPG", " ") == "![p.JPG](https://h/p.JPG)"
    assert media_markdown("https://h/") == "[attachment](https://h/)"
