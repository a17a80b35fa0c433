import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "SAFEBITE_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
SECRET_FIELDS = ("llm_api_key", "openfda_api_key", "tavily_api_key", "elevenlabs_api_key")


class AppSettings(BaseModel):
    # OpenAI-compatible chat endpoint (LM Studio, vLLM, hosted gateways).
    llm_base_url: Optional[str] = None
    llm_model: str = "qwen/qwen3-vl-8b"
    llm_api_key: Optional[str] = None
    llm_max_tokens: int = 2048
    llm_timeout_s: float = 60.0
    agent_mode: Literal["local", "agent"] = "local"

    starter_pack_url: Optional[str] = None
    openfda_api_key: Optional[str] = None
    tavily_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_voice_id: Optional[str] = None
    provider_timeout_s: float = 10.0

    foodkeeper_path: Optional[str] = None
    session_ttl_s: int = 3600
    host: str = "0.0.0.0"
    port: int = 8000
    allow_origins: List[str] = Field(default_factory=lambda: ["*"])

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_base_url and self.llm_model)

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in SECRET_FIELDS:
            if data.get(key):
                data[key] = "********"
        return data

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "llm_base_url": os.getenv("LLM_BASE_URL"),
        "llm_model": os.getenv("LLM_MODEL"),
        "llm_api_key": os.getenv("LLM_API_KEY"),
        "llm_max_tokens": os.getenv("LLM_MAX_TOKENS"),
        "llm_timeout_s": os.getenv("LLM_TIMEOUT_S"),
        "agent_mode": os.getenv("AGENT_MODE"),
        "starter_pack_url": os.getenv("STARTER_PACK_URL"),
        "openfda_api_key": os.getenv("OPENFDA_API_KEY"),
        "tavily_api_key": os.getenv("TAVILY_API_KEY"),
        "elevenlabs_api_key": os.getenv("ELEVENLABS_API_KEY"),
        "elevenlabs_voice_id": os.getenv("ELEVENLABS_VOICE_ID"),
        "provider_timeout_s": os.getenv("PROVIDER_TIMEOUT_S"),
        "foodkeeper_path": os.getenv("FOODKEEPER_PATH"),
        "session_ttl_s": os.getenv("SESSION_TTL_S"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
        "allow_origins": os.getenv("ALLOW_ORIGINS"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in ("llm_max_tokens", "session_ttl_s", "port"):
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    for key in ("llm_timeout_s", "provider_timeout_s"):
        if key in cleaned:
            cleaned[key] = float(cleaned[key])
    if "agent_mode" in cleaned:
        cleaned["agent_mode"] = str(cleaned["agent_mode"]).strip().lower()
    if "allow_origins" in cleaned:
        cleaned["allow_origins"] = [o.strip() for o in cleaned["allow_origins"].split(",") if o.strip()]
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except Exception:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    # Secrets usually live only in the environment; never let an empty file value hide them.
    for key in SECRET_FIELDS:
        if not merged.get(key) and env_data.get(key):
            merged[key] = env_data[key]
    return AppSettings(**merged)


def save_settings(settings: AppSettings, config_path: Optional[Path] = None) -> None:
    path = config_path or CONFIG_PATH
    path.write_text(settings.model_dump_json(indent=2))
