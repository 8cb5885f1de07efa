import json

import httpx
import pytest

from aether.integrations.openrouter import OpenRouterClient, ReasoningBackendError, parse_arguments

MESSAGES = [{"role": "user", "content": "hi"}]


def make_client(handler, **kwargs) -> OpenRouterClient:
    kwargs.setdefault("api_key", "test-key")
    kwargs.setdefault("model", "primary/model")
    kwargs.setdefault("fallback_models", [])
    return OpenRouterClient(
        base_url="https://router.test/api/v1",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def completion(message: dict, finish_reason: str = "stop") -> dict:
    return {"choices": [{"message": message, "finish_reason": finish_reason}]}


@pytest.mark.parametrize("raw,expected", [
    ('{"scene_id": "s1"}', {"scene_id": "s1"}),
    ({"a": 1}, {"a": 1}),
    ("", {}),
    (None, {}),
    ("{not json", {}),
    ("[1, 2]", {}),
])
def test_parse_arguments(raw, expected):
    assert parse_arguments(raw) == expected


@pytest.mark.asyncio
async def test_complete_parses_text_and_tool_calls():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json=completion({
            "content": "Checking.",
            "tool_calls": [
                {"id": "c1", "type": "function",
                 "function": {"name": "play_scene", "arguments": '{"scene_name": "Warm"}'}},
                {"id": "c2", "type": "function",
                 "function": {"name": "blackout", "arguments": "{broken"}},
            ],
        }, "tool_calls"))

    client = make_client(handler)
    step = await client.complete("system text", MESSAGES, [{"type": "function"}])

    assert step.text == "Checking."
    assert [(tc.id, tc.name, tc.arguments) for tc in step.tool_calls] == [
        ("c1", "play_scene", {"scene_name": "Warm"}),
        ("c2", "blackout", {}),
    ]
    assert step.wants_tools is True
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == "primary/model"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "system text"}
    assert seen["body"]["tools"] == [{"type": "function"}]
    assert client.request_count == 1
    await client.close()


@pytest.mark.asyncio
async def test_falls_back_to_next_model_in_order():
    tried = []

    def handler(request: httpx.Request) -> httpx.Response:
        model = json.loads(request.content)["model"]
        tried.append(model)
        if model != "third/model":
            return httpx.Response(503, json={"error": "overloaded"})
        return httpx.Response(200, json=completion({"content": "from third"}))

    client = make_client(handler, fallback_models=["second/model", "primary/model", "third/model"])
    step = await client.complete("s", MESSAGES, [])

    assert step.text == "from third"
    assert tried == ["primary/model", "second/model", "third/model"]
    await client.close()


@pytest.mark.asyncio
async def test_all_models_failing_raises():
    client = make_client(lambda request: httpx.Response(500), fallback_models=["other/model"])
    with pytest.raises(ReasoningBackendError):
        await client.complete("s", MESSAGES, [])
    await client.close()


@pytest.mark.asyncio
async def test_error_payload_counts_as_failure():
    client = make_client(lambda request: httpx.Response(200, json={"error": {"message": "bad key"}}))
    with pytest.raises(ReasoningBackendError):
        await client.complete("s", MESSAGES, [])
    await client.close()


@pytest.mark.asyncio
async def test_missing_key_is_not_configured():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=completion({"content": "x"}))

    client = make_client(handler, api_key="")
    assert client.is_configured is False
    with pytest.raises(ReasoningBackendError):
        await client.complete("s", MESSAGES, [])
    assert calls == []
    await client.close()


def sse(*payloads) -> bytes:
    lines = [": OPENROUTER PROCESSING", ""]
    for payload in payloads:
        lines.append(f"data: {payload if isinstance(payload, str) else json.dumps(payload)}")
        lines.append("")
    return "\n".join(lines).encode()


@pytest.mark.asyncio
async def test_stream_assembles_text_and_tool_calls():
    body = sse(
        {"choices": [{"delta": {"content": "Let me "}}]},
        {"choices": [{"delta": {"content": "check."}}]},
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "c1", "function": {"name": "play_", "arguments": '{"scene_'}}
        ]}}]},
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "function": {"name": "scene", "arguments": 'id": "s1"}'}}
        ]}}]},
        "not json at all",
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        "[DONE]",
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    client = make_client(handler)
    chunks = [c async for c in client.stream("s", MESSAGES, [])]

    assert [c.text for c in chunks if c.kind == "text"] == ["Let me ", "check."]
    calls = [c.tool_call for c in chunks if c.kind == "tool_call"]
    assert len(calls) == 1
    assert calls[0].id == "c1"
    assert calls[0].name == "play_scene"
    assert calls[0].arguments == {"scene_id": "s1"}
    assert chunks[-1].kind == "finish"
    assert chunks[-1].finish_reason == "tool_calls"
    await client.close()


@pytest.mark.asyncio
async def test_stream_falls_back_before_first_chunk():
    def handler(request: httpx.Request) -> httpx.Response:
        if json.loads(request.content)["model"] == "primary/model":
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, content=sse({"choices": [{"delta": {"content": "hello"}}]}, "[DONE]"))

    client = make_client(handler, fallback_models=["backup/model"])
    chunks = [c async for c in client.stream("s", MESSAGES, [])]

    assert chunks[0].text == "hello"
    assert chunks[-1].finish_reason == "stop"
    await client.close()


@pytest.mark.asyncio
async def test_ping_raises_on_error_status():
    client = make_client(lambda request: httpx.Response(401, json={"error": "unauthorized"}))
    with pytest.raises(httpx.HTTPStatusError):
        await client.ping(timeout=1.0)
    await client.close()


@pytest.mark.asyncio
async def test_ping_succeeds_with_single_token_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json=completion({"content": "p"}))

    client = make_client(handler)
    await client.ping()
    assert seen["max_tokens"] == 1
    await client.close()
