from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse
from pydantic import ValidationError

from .config import CONFIG_PATH, AppSettings, load_settings, save_settings
from .foodkeeper import FoodKeeper
from .llm import LLMClient
from .openfda import OpenFDAClient
from .openfoodfacts import OpenFoodFactsClient
from .orchestrator import RunOrchestrator
from .schemas import RunRequest, VoiceRequest, utc_iso
from .session_store import SessionStore
from .starter_pack import StarterPackClient
from .streaming import sse_session_stream
from .tavily import TavilyClient
from .voice import ElevenLabsClient, VoiceError


SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> RunOrchestrator:
    return request.app.state.orchestrator


def get_config_path(request: Request) -> Path:
    return request.app.state.config_path


def get_voice_client(request: Request) -> ElevenLabsClient:
    return request.app.state.voice_client


router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok", "service": "safebite-api", "time": utc_iso()}


@router.get("/settings")
async def get_settings_route(settings: AppSettings = Depends(get_settings)):
    return {"settings": settings.to_safe_dict()}


@router.post("/settings")
async def update_settings_route(
    request: Request,
    settings: AppSettings = Depends(get_settings),
    config_path: Path = Depends(get_config_path),
):
    body = await request.json()
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="settings body must be an object")
    try:
        new_settings = AppSettings(**{**settings.model_dump(), **body})
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    save_settings(new_settings, config_path=config_path)
    state = request.app.state
    state.settings = new_settings
    state.llm_client.base_url = (new_settings.llm_base_url or "").rstrip("/")
    state.llm_client.model = new_settings.llm_model
    state.llm_client.api_key = new_settings.llm_api_key
    state.llm_client.max_output_tokens = new_settings.llm_max_tokens
    state.fda_client.api_key = new_settings.openfda_api_key
    state.news_client.api_key = new_settings.tavily_api_key
    state.starter_pack_client.base_url = (new_settings.starter_pack_url or "").rstrip("/")
    state.voice_client.api_key = new_settings.elevenlabs_api_key
    state.voice_client.voice_id = new_settings.elevenlabs_voice_id
    state.orchestrator.agent_mode = new_settings.agent_mode
    return {"ok": True, "settings": new_settings.to_safe_dict()}


@router.post("/api/agent/run")
async def start_run(
    payload: RunRequest,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    handle = orchestrator.start(payload)
    return {"session_id": handle.session_id}


@router.get("/api/agent/stream")
async def stream_agent_events(
    session_id: Optional[str] = None,
    store: SessionStore = Depends(get_store),
):
    if not session_id:
        raise HTTPException(status_code=400, detail="session_id required")
    return StreamingResponse(
        sse_session_stream(store, session_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/api/agent/session/{session_id}")
async def get_session(session_id: str, store: SessionStore = Depends(get_store)):
    snapshot = store.snapshot(session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return snapshot


@router.get("/api/voice/status")
async def voice_status(voice_client: ElevenLabsClient = Depends(get_voice_client)):
    return {"available": voice_client.enabled}


@router.post("/api/voice")
async def synthesize_voice(
    payload: VoiceRequest,
    voice_client: ElevenLabsClient = Depends(get_voice_client),
):
    if not voice_client.enabled:
        raise HTTPException(status_code=503, detail="Voice not configured")
    try:
        audio = await voice_client.synthesize(payload.text)
    except VoiceError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return Response(content=audio, media_type="audio/mpeg")


def create_app(
    settings: AppSettings,
    *,
    store: Optional[SessionStore] = None,
    llm_client: Optional[LLMClient] = None,
    off_client: Optional[OpenFoodFactsClient] = None,
    fda_client: Optional[OpenFDAClient] = None,
    news_client: Optional[TavilyClient] = None,
    starter_pack_client: Optional[StarterPackClient] = None,
    voice_client: Optional[ElevenLabsClient] = None,
    foodkeeper: Optional[FoodKeeper] = None,
    config_path: Optional[Path] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            for client in (
                app.state.llm_client,
                app.state.off_client,
                app.state.fda_client,
                app.state.news_client,
                app.state.starter_pack_client,
                app.state.voice_client,
            ):
                await client.close()

    app = FastAPI(title="SafeBite Agent API", lifespan=lifespan)
    app.state.settings = settings
    app.state.config_path = config_path or CONFIG_PATH
    app.state.store = store if store is not None else SessionStore(ttl_seconds=settings.session_ttl_s)
    app.state.llm_client = llm_client or LLMClient(
        settings.llm_base_url,
        settings.llm_model,
        api_key=settings.llm_api_key,
        max_output_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout_s,
    )
    app.state.off_client = off_client or OpenFoodFactsClient(timeout=settings.provider_timeout_s)
    app.state.fda_client = fda_client or OpenFDAClient(settings.openfda_api_key, timeout=settings.provider_timeout_s)
    app.state.news_client = news_client or TavilyClient(settings.tavily_api_key, timeout=settings.provider_timeout_s)
    app.state.starter_pack_client = starter_pack_client or StarterPackClient(
        settings.starter_pack_url, timeout=settings.llm_timeout_s
    )
    app.state.voice_client = voice_client or ElevenLabsClient(
        settings.elevenlabs_api_key, settings.elevenlabs_voice_id
    )
    app.state.foodkeeper = foodkeeper or FoodKeeper.from_path(
        Path(settings.foodkeeper_path) if settings.foodkeeper_path else None
    )
    app.state.orchestrator = RunOrchestrator(
        app.state.store,
        off_client=app.state.off_client,
        fda_client=app.state.fda_client,
        news_client=app.state.news_client,
        llm_client=app.state.llm_client,
        foodkeeper=app.state.foodkeeper,
        starter_pack=app.state.starter_pack_client,
        agent_mode=settings.agent_mode,
    )
    app.state.run_tasks = app.state.orchestrator.tasks

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        allow_credentials=False,
    )
    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import os
    import uvicorn

    settings = app.state.settings
    reload_enabled = os.getenv("SAFEBITE_RELOAD", "").lower() in ("1", "true", "yes", "on")
    try:
        uvicorn.run(
            "safebite.main:app",
            host=getattr(settings, "host", "0.0.0.0"),
            port=settings.port,
            reload=reload_enabled,
        )
    except KeyboardInterrupt:
        pass
