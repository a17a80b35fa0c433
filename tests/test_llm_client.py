import json

import httpx
import pytest
import respx
from httpx import Response

from safebite.llm import LLMClient, fallback_summary, message_from_response

BASE = "http://llm.test/v1"


@pytest.mark.asyncio
async def test_chat_completion_payload_and_tool_messages():
    client = LLMClient(BASE + "/", "test-model", api_key="sk-test", max_output_tokens=256)
    captured = {}
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            def handler(request):
                captured["json"] = json.loads(request.content)
                captured["auth"] = request.headers.get("Authorization")
                return Response(200, json={"choices": [{"message": {"content": "ok"}}]})

            respx_mock.post(f"{BASE}/chat/completions").mock(side_effect=handler)
            messages = [
                {"role": "system", "content": "sys"},
                {"role": "user", "content": "   "},
                {"role": "assistant", "content": None, "tool_calls": [{"id": "c1"}]},
                {"role": "tool", "tool_call_id": "c1", "content": "{}"},
                {"role": "bogus", "content": "x"},
            ]
            data = await client.chat_completion(messages, max_tokens=2048, tools=[{"type": "function"}])
    finally:
        await client.close()
    assert message_from_response(data)["content"] == "ok"
    body = captured["json"]
    assert captured["auth"] == "Bearer sk-test"
    assert body["max_tokens"] == 256
    assert [m["role"] for m in body["messages"]] == ["system", "assistant", "tool"]
    assert body["messages"][2]["tool_call_id"] == "c1"
    assert body["tools"] == [{"type": "function"}]


@pytest.mark.asyncio
async def test_chat_completion_disabled_raises():
    client = LLMClient(None, "test-model")
    try:
        with pytest.raises(RuntimeError):
            await client.chat_completion([{"role": "user", "content": "hi"}])
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_summarize_never_raises():
    client = LLMClient(BASE, "test-model")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            route = respx_mock.post(f"{BASE}/chat/completions")
            route.mock(return_value=Response(200, json={"choices": [{"message": {"content": " Safe to eat. "}}]}))
            assert await client.summarize("facts") == "Safe to eat."
            route.mock(side_effect=httpx.ConnectError("down"))
            assert await client.summarize("facts about lettuce") == fallback_summary("facts about lettuce")
            route.mock(return_value=Response(200, json={"choices": [{"message": {"content": ""}}]}))
            assert await client.summarize("x" * 300) == "x" * 160
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_summarize_without_model_echoes_input():
    client = LLMClient(None, "test-model")
    try:
        summary = await client.summarize("Product: kale")
    finally:
        await client.close()
    assert summary == "Summary unavailable (no model configured). Input: Product: kale"
