import asyncio
from pathlib import Path
from typing import Any, Dict, List

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from safebite.config import AppSettings
from safebite.foodkeeper import FoodKeeper
from safebite.main import create_app
from safebite.orchestrator import RunOrchestrator
from safebite.session_store import SessionStore
from tests.fakes import (
    FakeLLMClient,
    FakeNewsClient,
    FakeOpenFDAClient,
    FakeOpenFoodFactsClient,
    FakeVoiceClient,
)

ROMAINE_BARCODE = "0123456789"
ROMAINE_PRODUCT = {
    "product_name": "Romaine Hearts",
    "ingredients_text": "romaine lettuce",
    "allergens_tags": [],
    "categories": "romaine lettuce",
}


def make_settings(tmp_path: Path, **overrides) -> AppSettings:
    settings = AppSettings(
        llm_base_url=None,
        llm_model="test-model",
        starter_pack_url=None,
        tavily_api_key=None,
        host="127.0.0.1",
        port=8000,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


def make_orchestrator(
    store: SessionStore | None = None,
    *,
    llm: FakeLLMClient | None = None,
    off: FakeOpenFoodFactsClient | None = None,
    fda: FakeOpenFDAClient | None = None,
    news: FakeNewsClient | None = None,
    starter_pack: Any = None,
    agent_mode: str = "local",
) -> RunOrchestrator:
    return RunOrchestrator(
        store if store is not None else SessionStore(),
        off_client=off or FakeOpenFoodFactsClient({ROMAINE_BARCODE: ROMAINE_PRODUCT}),
        fda_client=fda or FakeOpenFDAClient({"romaine": "E. coli risk"}),
        news_client=news or FakeNewsClient(),
        llm_client=llm or FakeLLMClient(enabled=False),
        foodkeeper=FoodKeeper.from_path(),
        starter_pack=starter_pack,
        agent_mode=agent_mode,
    )


async def collect(store: SessionStore, session_id: str, timeout: float = 5.0) -> List[Dict[str, Any]]:
    """Drain a session stream into [{"event": ..., "data": ...}] items."""
    from safebite.streaming import iter_session_events

    async def _drain() -> List[Dict[str, Any]]:
        return [{"event": ev, "data": data} async for ev, data in iter_session_events(store, session_id)]

    return await asyncio.wait_for(_drain(), timeout=timeout)


@pytest.fixture
def app_factory(tmp_path: Path):
    def _factory(
        *,
        fake_llm: FakeLLMClient | None = None,
        fake_off: FakeOpenFoodFactsClient | None = None,
        fake_fda: FakeOpenFDAClient | None = None,
        fake_news: FakeNewsClient | None = None,
        fake_voice: FakeVoiceClient | None = None,
        starter_pack: Any = None,
        **settings_overrides,
    ):
        settings = make_settings(tmp_path, **settings_overrides)
        app = create_app(
            settings,
            llm_client=fake_llm or FakeLLMClient(enabled=False),
            off_client=fake_off or FakeOpenFoodFactsClient({ROMAINE_BARCODE: ROMAINE_PRODUCT}),
            fda_client=fake_fda or FakeOpenFDAClient({"romaine": "E. coli risk"}),
            news_client=fake_news or FakeNewsClient(),
            starter_pack_client=starter_pack,
            voice_client=fake_voice or FakeVoiceClient(),
            config_path=tmp_path / "config.json",
        )
        return app

    return _factory


@pytest.fixture
async def client(app_factory):
    app = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            yield http_client
