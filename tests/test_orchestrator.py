import pytest

from safebite.schemas import RunRequest
from safebite.session_store import SessionStore
from safebite.streaming import materialize_steps
from tests.conftest import ROMAINE_BARCODE, collect, make_orchestrator
from tests.fakes import FakeLLMClient, FakeOpenFDAClient, FakeOpenFoodFactsClient


def step_ids(items):
    return [s["id"] for s in materialize_steps(i["data"] for i in items if i["event"] == "step")]


@pytest.mark.asyncio
async def test_romaine_text_run_is_caution_with_alternatives():
    store = SessionStore()
    orchestrator = make_orchestrator(store)
    handle = orchestrator.start(RunRequest(input_type="text", raw_text="romaine lettuce"))
    await handle.wait()

    items = await collect(store, handle.session_id)
    assert step_ids(items) == ["intent", "recall", "spoilage", "sustainability", "reasoning"]
    final = items[-1]
    assert final["event"] == "final"
    report = final["data"]
    assert report["session_id"] == handle.session_id
    assert report["safety_score"] == 50
    assert report["safety_flag"] == "Caution"
    assert report["sustainability_score"] == 90
    assert len(report["alternatives"]) == 2
    assert report["next_steps"][0].startswith("Do not consume")
    assert {"title": "openFDA", "uri": "https://open.fda.gov/apis/food/recall/"} in report["sources"]


@pytest.mark.asyncio
async def test_broccoli_is_low_risk_without_alternatives():
    store = SessionStore()
    orchestrator = make_orchestrator(store)
    handle = orchestrator.start(RunRequest(input_type="text", raw_text="plain steamed broccoli"))
    await handle.wait()

    report = store.snapshot(handle.session_id)["final"]
    assert report["safety_score"] == 100
    assert report["safety_flag"] == "Low risk"
    assert report["sustainability_score"] == 90
    assert report["alternatives"] == []


@pytest.mark.asyncio
async def test_barcode_hit_adds_product_source_and_barcode_step():
    store = SessionStore()
    orchestrator = make_orchestrator(store)
    handle = orchestrator.start(RunRequest(input_type="barcode", barcode=ROMAINE_BARCODE))
    await handle.wait()

    items = await collect(store, handle.session_id)
    assert step_ids(items)[:3] == ["intent", "barcode", "recall"]
    report = items[-1]["data"]
    assert report["product_name"] == "Romaine Hearts"
    assert report["ingredient_list"] == ["romaine lettuce"]
    assert report["sources"][0]["title"] == "OpenFoodFacts"
    assert {"title": "openFDA", "uri": "https://open.fda.gov/apis/food/recall/"} in report["sources"]
    assert report["safety_score"] <= 60
    assert report["safety_flag"] == "Caution"


@pytest.mark.asyncio
async def test_barcode_miss_is_completed_step_and_still_final():
    store = SessionStore()
    orchestrator = make_orchestrator(store, off=FakeOpenFoodFactsClient({}))
    handle = orchestrator.start(RunRequest(input_type="barcode", barcode="999"))
    await handle.wait()

    items = await collect(store, handle.session_id)
    barcode = [s for s in materialize_steps(i["data"] for i in items if i["event"] == "step") if s["id"] == "barcode"][0]
    assert barcode["status"] == "completed"
    assert barcode["label"] == "Barcode not found"
    assert items[-1]["data"]["product_name"] == "999"
    assert items[-1]["event"] == "final"


@pytest.mark.asyncio
async def test_recall_adapter_failure_is_error_step_not_fatal():
    store = SessionStore()
    orchestrator = make_orchestrator(store, fda=FakeOpenFDAClient(error=True))
    handle = orchestrator.start(RunRequest(input_type="text", raw_text="romaine lettuce"))
    await handle.wait()

    snap = store.snapshot(handle.session_id)
    recall = [s for s in materialize_steps(snap["events"]) if s["id"] == "recall"][0]
    assert recall["status"] == "error"
    assert snap["status"] == "completed"
    # No recall penalty, only the storage risk.
    assert snap["final"]["safety_score"] == 90


@pytest.mark.asyncio
async def test_summary_uses_user_language():
    store = SessionStore()
    llm = FakeLLMClient(enabled=True, summary="Resumen listo.")
    orchestrator = make_orchestrator(store, llm=llm)
    request = RunRequest(input_type="text", raw_text="apple", prefs={"user_language": "Spanish"})
    handle = orchestrator.start(request)
    await handle.wait()

    assert llm.summary_calls[0]["language"] == "Spanish"
    assert store.snapshot(handle.session_id)["final"]["explanation_short"] == "Resumen listo."


@pytest.mark.asyncio
async def test_unexpected_failure_ends_with_error_step_and_terminal_error():
    class ExplodingFDA(FakeOpenFDAClient):
        async def search_recalls(self, query):
            raise RuntimeError("database on fire")

    store = SessionStore()
    orchestrator = make_orchestrator(store, fda=ExplodingFDA())
    handle = orchestrator.start(RunRequest(input_type="text", raw_text="apple"))
    await handle.wait()

    items = await collect(store, handle.session_id)
    assert items[-1] == {"event": "error", "data": {"message": "database on fire"}}
    run_step = items[-2]["data"]
    assert run_step["id"] == "run"
    assert run_step["status"] == "error"
    assert orchestrator.tasks == {}
