import httpx
import pytest
import respx

from safebite.mock_starter_pack import app as mock_app
from safebite.schemas import RunRequest
from safebite.session_store import SessionStore
from safebite.starter_pack import StarterPackClient, StarterPackError
from safebite.streaming import materialize_steps
from tests.conftest import collect, make_orchestrator
from tests.fakes import FakeStarterPack

STARTER_URL = "http://starter.test"


@pytest.mark.asyncio
async def test_unreachable_proxy_falls_back_to_local_sequence():
    client = StarterPackClient(STARTER_URL)
    store = SessionStore()
    orchestrator = make_orchestrator(store, starter_pack=client)
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(f"{STARTER_URL}/run").mock(side_effect=httpx.ConnectError("refused"))
            handle = orchestrator.start(RunRequest(input_type="text", raw_text="romaine lettuce"))
            await handle.wait()
    finally:
        await client.close()

    items = await collect(store, handle.session_id)
    raw_steps = [i["data"] for i in items if i["event"] == "step"]
    proxy_errors = [s for s in raw_steps if s["id"] == "proxy" and s["status"] == "error"]
    assert len(proxy_errors) == 1
    assert [s["id"] for s in materialize_steps(raw_steps)] == [
        "proxy",
        "intent",
        "recall",
        "spoilage",
        "sustainability",
        "reasoning",
    ]
    assert items[-1]["event"] == "final"
    assert items[-1]["data"]["safety_flag"] == "Caution"


@pytest.mark.asyncio
async def test_proxy_success_is_final_verbatim():
    remote = {"product_name": "Remote", "safety_score": 12, "custom": {"nested": True}}
    store = SessionStore()
    starter = FakeStarterPack(response=remote)
    orchestrator = make_orchestrator(store, starter_pack=starter)
    request = RunRequest(input_type="barcode", barcode="0123456789", user_prompt="is it safe?")
    handle = orchestrator.start(request)
    await handle.wait()

    items = await collect(store, handle.session_id)
    assert items[-1] == {"event": "final", "data": remote}
    assert [i["data"]["status"] for i in items if i["event"] == "step"] == ["running", "completed"]
    assert starter.calls[0]["barcode"] == "0123456789"
    assert starter.calls[0]["user_prompt"] == "is it safe?"


@pytest.mark.asyncio
async def test_proxy_against_mock_backend():
    client = StarterPackClient("http://mock", transport=httpx.ASGITransport(app=mock_app))
    store = SessionStore()
    orchestrator = make_orchestrator(store, starter_pack=client)
    try:
        handle = orchestrator.start(RunRequest(input_type="text", raw_text="Peanut butter"))
        await handle.wait()
    finally:
        await client.close()

    final = store.snapshot(handle.session_id)["final"]
    assert final["product_name"] == "Peanut butter"
    assert final["session_id"].startswith("mock-")


@pytest.mark.asyncio
async def test_starter_pack_client_error_mapping():
    client = StarterPackClient(STARTER_URL)
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            route = respx_mock.post(f"{STARTER_URL}/run")
            route.mock(return_value=httpx.Response(502, json={"detail": "bad gateway"}))
            with pytest.raises(StarterPackError):
                await client.run({"input_type": "text"})
            route.mock(return_value=httpx.Response(200, json=["not", "an", "object"]))
            with pytest.raises(StarterPackError):
                await client.run({"input_type": "text"})
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_disabled_starter_pack_is_skipped():
    client = StarterPackClient(None)
    store = SessionStore()
    orchestrator = make_orchestrator(store, starter_pack=client)
    handle = orchestrator.start(RunRequest(input_type="text", raw_text="apple"))
    await handle.wait()
    await client.close()

    ids = [s["id"] for s in materialize_steps(store.snapshot(handle.session_id)["events"])]
    assert "proxy" not in ids
