"""Minimal Agent Starter Pack-compatible backend for local testing. Not for production use.

Run with: uvicorn safebite.mock_starter_pack:app --port 8001
"""

import uuid
from typing import Any, Dict

from fastapi import Body, FastAPI

from .schemas import utc_iso


app = FastAPI(title="Mock Agent Starter Pack")


@app.post("/run")
async def run(payload: Dict[str, Any] = Body(default={})):
    product = str(payload.get("raw_text") or payload.get("user_prompt") or payload.get("barcode") or "Unknown item")
    return {
        "session_id": f"mock-{uuid.uuid4().hex[:6]}",
        "product_name": product[:50],
        "ingredient_list": ["water", "salt", "spices"],
        "allergen_risk": "Contains mock data only. Replace with real backend analysis.",
        "safety_score": 78,
        "safety_flag": "Low risk",
        "sustainability_score": 65,
        "sustainability_flag": "Moderate impact",
        "explanation_short": f"Mock assessment for {product}.",
        "explanation_detailed": f"This is a mock response generated locally at {utc_iso()}.",
        "alternatives": [
            {"name": "Alt A", "why": "Lower salt", "taste_similarity": "8/10"},
            {"name": "Alt B", "why": "Organic option", "taste_similarity": "7/10"},
        ],
        "next_steps": ["Verify ingredients on label.", "Consult your dietician for personal restrictions."],
        "sources": [
            {"title": "Mock source 1", "uri": "https://example.com/mock1"},
            {"title": "Mock source 2", "uri": "https://example.com/mock2"},
        ],
    }


@app.get("/health")
async def health():
    return {"status": "ok"}
