import json
import logging
from types import SimpleNamespace

import pytest

from career_relay.domain.exceptions import ApiError, NetworkError, RelayError
from career_relay.domain.models import ConversationTurn, ProviderCredential, RelayState
from career_relay.relay import DONE_FRAME, StreamRelay

from fakes import FakeProvider, FakeResponse, make_anthropic, make_async_client, text_delta


def _relay(settings_stub, provider, seen=None):
    def factory(credential, settings):
        if seen is not None:
            seen.append(credential)
        return provider

    return StreamRelay(settings=settings_stub, provider_factory=factory)


async def _drain(stream):
    return [frame async for frame in stream]


def _texts(frames):
    out = []
    for frame in frames:
        body = frame[len("data: "):].strip()
        if body == "[DONE]":
            continue
        payload = json.loads(body)
        if "text" in payload:
            out.append(payload["text"])
    return out


@pytest.mark.asyncio
async def test_chunks_concatenate_to_full_text(settings_stub):
    fixture = ["第一段，", "second part\n", "含\"引号\"与换行\n", "end."]
    relay = _relay(settings_stub, FakeProvider(fixture))
    frames = await _drain(relay.stream("sys", [], "hi"))
    assert "".join(_texts(frames)) == "".join(fixture)
    assert all(f.endswith("\n\n") for f in frames)


@pytest.mark.asyncio
async def test_done_is_emitted_once_and_last(settings_stub):
    relay = _relay(settings_stub, FakeProvider(["a", "b"]))
    stream = relay.stream("sys", [], "hi")
    frames = await _drain(stream)
    assert frames.count(DONE_FRAME) == 1
    assert frames[-1] == DONE_FRAME
    assert stream.state is RelayState.COMPLETED
    assert stream.chunks == 2


@pytest.mark.asyncio
async def test_error_is_emitted_once_and_last(settings_stub):
    err = ApiError(code="API_ERROR", message="API error 500: boom", http_status=500)
    relay = _relay(settings_stub, FakeProvider(["partial"], error=err))
    stream = relay.stream("sys", [], "hi")
    frames = await _drain(stream)
    assert frames[0] == 'data: {"text":"partial"}\n\n'
    assert frames[-1] == 'data: {"error":"API error 500: boom"}\n\n'
    assert sum(1 for f in frames if '"error"' in f) == 1
    assert DONE_FRAME not in frames
    assert stream.state is RelayState.FAILED


@pytest.mark.asyncio
async def test_non_business_exception_becomes_error_frame(settings_stub):
    relay = _relay(settings_stub, FakeProvider([], error=RuntimeError("socket closed")))
    frames = await _drain(relay.stream("sys", [], "hi"))
    assert frames == ['data: {"error":"socket closed"}\n\n']


@pytest.mark.asyncio
async def test_factory_failure_becomes_error_frame(settings_stub):
    def factory(credential, settings):
        raise NetworkError(code="NETWORK_ERROR", message="unreachable")

    relay = StreamRelay(settings=settings_stub, provider_factory=factory)
    stream = relay.stream("sys", [], "hi")
    frames = await _drain(stream)
    assert frames == ['data: {"error":"unreachable"}\n\n']
    assert stream.state is RelayState.FAILED


@pytest.mark.asyncio
async def test_unknown_provider_becomes_error_frame(settings_stub):
    relay = StreamRelay(settings=settings_stub)
    cred = ProviderCredential(provider="mistral", api_key="k" * 12)
    frames = await _drain(relay.stream("sys", [], "hi", cred))
    assert len(frames) == 1
    assert "Unknown provider" in json.loads(frames[0][6:])["error"]


@pytest.mark.asyncio
async def test_missing_default_key_becomes_error_frame(settings_stub):
    settings_stub.anthropic_api_key = None
    relay = StreamRelay(settings=settings_stub)
    frames = await _drain(relay.stream("sys", [], "hi"))
    assert frames == ['data: {"error":"ANTHROPIC_API_KEY not set"}\n\n']


@pytest.mark.asyncio
async def test_user_message_is_appended_after_prior_turns(settings_stub):
    provider = FakeProvider(["ok"])
    relay = _relay(settings_stub, provider)
    prior = [
        ConversationTurn(role="user", content="q1"),
        ConversationTurn(role="assistant", content="a1"),
    ]
    await _drain(relay.stream("sys", prior, "q2"))
    req = provider.requests[0]
    assert [(t.role, t.content) for t in req.turns] == [("user", "q1"), ("assistant", "a1"), ("user", "q2")]
    assert req.system_prompt == "sys"
    assert req.max_tokens == 4096
    assert len(prior) == 2


@pytest.mark.asyncio
async def test_credential_model_is_used_verbatim(settings_stub):
    provider = FakeProvider(["ok"])
    seen = []
    relay = _relay(settings_stub, provider, seen)
    cred = ProviderCredential(provider="openai", api_key="sk-user-key-123", model="m1")
    await _drain(relay.stream("sys", [], "hi", cred))
    assert seen == [cred]
    assert provider.requests[0].provider == "openai"
    assert provider.requests[0].model == "m1"


@pytest.mark.asyncio
async def test_credential_without_model_uses_vendor_default(settings_stub):
    provider = FakeProvider(["ok"])
    relay = _relay(settings_stub, provider)
    cred = ProviderCredential(provider="deepseek", api_key="sk-user-key-123")
    await _drain(relay.stream("sys", [], "hi", cred))
    assert provider.requests[0].model == "deepseek-chat"


@pytest.mark.asyncio
async def test_abandoned_stream_releases_provider(settings_stub, caplog):
    caplog.set_level(logging.INFO, logger="career_relay")
    provider = FakeProvider(["a", "b", "c"])
    relay = _relay(settings_stub, provider)
    stream = relay.stream("sys", [], "hi")
    first = await stream.__anext__()
    assert first == 'data: {"text":"a"}\n\n'
    await stream.aclose()
    assert provider.closed
    assert stream.state is RelayState.STREAMING
    assert not stream.state.is_terminal
    assert [r.getMessage() for r in caplog.records].count("relay.cancelled") == 1
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()


@pytest.mark.asyncio
async def test_complete_wraps_failures(settings_stub):
    err = NetworkError(code="NETWORK_ERROR", message="timed out")
    relay = _relay(settings_stub, FakeProvider([], error=err))
    with pytest.raises(RelayError) as ei:
        await relay.complete("sys", [], "hi")
    assert ei.value.message == "timed out"
    assert ei.value.code == "NETWORK_ERROR"
    assert ei.value.http_status == 502


@pytest.mark.asyncio
async def test_default_anthropic_example(monkeypatch, settings_stub):
    captured = {}
    events = [
        SimpleNamespace(type="message_start"),
        text_delta("Hi"),
        text_delta(" there"),
        SimpleNamespace(type="message_stop"),
    ]
    monkeypatch.setattr("anthropic.AsyncAnthropic", make_anthropic(events, captured))
    relay = StreamRelay(settings=settings_stub)
    frames = await _drain(relay.stream("You are helpful.", [], "Hello"))
    assert frames == [
        'data: {"text":"Hi"}\n\n',
        'data: {"text":" there"}\n\n',
        "data: [DONE]\n\n",
    ]
    assert captured["client_kwargs"]["api_key"] == "sk-ant-default-key"
    assert captured["stream_kwargs"]["model"] == "claude-sonnet-4-6"
    assert captured["stream_kwargs"]["system"] == "You are helpful."
    assert captured["stream_kwargs"]["messages"] == [{"role": "user", "content": "Hello"}]


@pytest.mark.asyncio
async def test_openai_credential_dispatch(monkeypatch, settings_stub):
    captured = {}
    lines = [
        'data: {"choices": [{"delta": {"content": "x"}}]}',
        "data: [DONE]",
    ]
    monkeypatch.setattr("httpx.AsyncClient", make_async_client(FakeResponse(lines), captured))
    relay = StreamRelay(settings=settings_stub)
    cred = ProviderCredential(provider="openai", api_key="sk-user-key-123", model="m1")
    frames = await _drain(relay.stream("sys", [], "hi", cred))
    assert frames == ['data: {"text":"x"}\n\n', DONE_FRAME]
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["json"]["model"] == "m1"
    assert captured["headers"]["Authorization"] == "Bearer sk-user-key-123"


@pytest.mark.asyncio
async def test_malformed_line_is_skipped(monkeypatch, settings_stub):
    captured = {}
    lines = [
        'data: {"choices": [{"delta": {"content": "one"}}]}',
        "data: {this is not json",
        'data: {"choices": [{"delta": {"content": "two"}}]}',
        "data: [DONE]",
    ]
    monkeypatch.setattr("httpx.AsyncClient", make_async_client(FakeResponse(lines), captured))
    relay = StreamRelay(settings=settings_stub)
    cred = ProviderCredential(provider="deepseek", api_key="sk-user-key-123")
    frames = await _drain(relay.stream("sys", [], "hi", cred))
    assert frames == ['data: {"text":"one"}\n\n', 'data: {"text":"two"}\n\n', DONE_FRAME]


@pytest.mark.asyncio
async def test_unexpected_shape_line_does_not_end_stream(monkeypatch, settings_stub):
    captured = {}
    lines = [
        'data: {"choices": [{"delta": {"content": "one"}}]}',
        'data: {"choices": {"0": 1}}',
        'data: {"choices": [{"delta": {"content": "two"}}]}',
        "data: [DONE]",
    ]
    monkeypatch.setattr("httpx.AsyncClient", make_async_client(FakeResponse(lines), captured))
    relay = StreamRelay(settings=settings_stub)
    cred = ProviderCredential(provider="openai", api_key="sk-user-key-123")
    stream = relay.stream("sys", [], "hi", cred)
    frames = await _drain(stream)
    assert frames == ['data: {"text":"one"}\n\n', 'data: {"text":"two"}\n\n', DONE_FRAME]
    assert stream.state is RelayState.COMPLETED


def _openai_line(text):
    return json.dumps({"choices": [{"index": 0, "delta": {"content": text}}]})


def _gemini_line(text):
    return json.dumps({"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]})


HTTP_VENDOR_FIXTURES = {
    "openai": (
        ["data: " + _openai_line(t) for t in ("Hello", ", ", "world", "!")] + ["data: [DONE]"],
        {"choices": [{"message": {"role": "assistant", "content": "Hello, world!"}}]},
    ),
    "deepseek": (
        ["data: " + _openai_line(t) for t in ("你好", "，世界")] + ["data: [DONE]"],
        {"choices": [{"message": {"role": "assistant", "content": "你好，世界"}}]},
    ),
    "gemini": (
        ["data: " + _gemini_line(t) for t in ("Hello", ", ", "world", "!")],
        {"candidates": [{"content": {"role": "model", "parts": [{"text": "Hello, world!"}]}}]},
    ),
}


@pytest.mark.asyncio
@pytest.mark.parametrize("vendor", sorted(HTTP_VENDOR_FIXTURES))
async def test_stream_and_complete_match_per_http_vendor(monkeypatch, settings_stub, vendor):
    lines, body = HTTP_VENDOR_FIXTURES[vendor]
    relay = StreamRelay(settings=settings_stub)
    cred = ProviderCredential(provider=vendor, api_key="user-key-0123456")
    prior = [ConversationTurn(role="user", content="q1"), ConversationTurn(role="assistant", content="a1")]

    streamed = {}
    monkeypatch.setattr("httpx.AsyncClient", make_async_client(FakeResponse(lines), streamed))
    frames = await _drain(relay.stream("sys", prior, "q2", cred))

    completed = {}
    post = FakeResponse(json_data=body)
    monkeypatch.setattr("httpx.AsyncClient", make_async_client(None, completed, post_response=post))
    text = await relay.complete("sys", prior, "q2", cred)

    assert frames[-1] == DONE_FRAME
    assert "".join(_texts(frames)) == text
    # 两条路径发给厂商的消息、模型与 token 上限一致，只差流式开关
    stream_payload = dict(streamed["json"])
    stream_payload.pop("stream", None)
    assert stream_payload == completed["json"]
    assert streamed["headers"] == completed["headers"]


@pytest.mark.asyncio
async def test_stream_and_complete_match_for_anthropic(monkeypatch, settings_stub):
    captured = {}
    events = [SimpleNamespace(type="message_start")] + [text_delta(t) for t in ("Hello", ", ", "world", "!")]
    monkeypatch.setattr("anthropic.AsyncAnthropic", make_anthropic(events, captured, final_text="Hello, world!"))
    relay = StreamRelay(settings=settings_stub)
    prior = [ConversationTurn(role="user", content="q1"), ConversationTurn(role="assistant", content="a1")]

    frames = await _drain(relay.stream("sys", prior, "q2"))
    text = await relay.complete("sys", prior, "q2")

    assert "".join(_texts(frames)) == text == "Hello, world!"
    assert captured["stream_kwargs"] == captured["create_kwargs"]


@pytest.mark.asyncio
async def test_closing_finished_stream_is_not_a_cancellation(settings_stub, caplog):
    caplog.set_level(logging.INFO, logger="career_relay")
    stream = _relay(settings_stub, FakeProvider(["a"])).stream("sys", [], "hi")
    await _drain(stream)
    await stream.aclose()
    assert stream.state.is_terminal
    assert "relay.cancelled" not in [r.getMessage() for r in caplog.records]


@pytest.mark.parametrize(
    "state, terminal",
    [
        (RelayState.DISPATCHING, False),
        (RelayState.STREAMING, False),
        (RelayState.COMPLETED, True),
        (RelayState.FAILED, True),
    ],
)
def test_relay_state_terminal(state, terminal):
    assert state.is_terminal is terminal
