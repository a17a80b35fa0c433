import json
import re
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .foodkeeper import StorageGuidance
from .schemas import Alternative, SafetyReport, Source


RECALL_SOURCE = Source(title="openFDA", uri="https://open.fda.gov/apis/food/recall/")
BARCODE_SOURCE_TITLE = "OpenFoodFacts"
GENERIC_ALTERNATIVES = [
    Alternative(name="Plant-based alternative", why="Lower risk and impact", taste_similarity="7/10"),
    Alternative(name="Local fresh produce", why="Fewer recalls; shorter supply chain", taste_similarity="6/10"),
]
DEFAULT_STORAGE_ADVICE = "Keep refrigerated if perishable; follow standard food safety practices."

REPORT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "product_name": {"type": "string"},
        "ingredient_list": {"type": "array", "items": {"type": "string"}},
        "allergen_risk": {"type": "string"},
        "safety_score": {"type": "integer"},
        "safety_flag": {"type": "string", "enum": ["Unsafe", "Caution", "Low risk"]},
        "sustainability_score": {"type": "integer"},
        "sustainability_flag": {"type": "string"},
        "explanation_short": {"type": "string"},
        "explanation_detailed": {"type": "string"},
        "alternatives": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "why": {"type": "string"},
                    "taste_similarity": {"type": "string"},
                },
                "required": ["name"],
            },
        },
        "next_steps": {"type": "array", "items": {"type": "string"}},
        "sources": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"title": {"type": "string"}, "uri": {"type": "string"}},
                "required": ["uri"],
            },
        },
    },
    "required": ["product_name", "safety_score", "explanation_short", "safety_flag"],
}

REPORT_RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {"name": "safebite_report", "schema": REPORT_SCHEMA},
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class AgentReportError(RuntimeError):
    pass


def split_ingredients(text: Optional[str]) -> List[str]:
    return [part.strip() for part in re.split(r"[,;]", text or "") if part.strip()]


def allergen_risk_text(allergens: List[str]) -> str:
    if allergens:
        return f"Potential allergens: {', '.join(allergens)}"
    return "No common allergens detected in data."


def build_local_report(
    *,
    session_id: str,
    product_name: str,
    product: Optional[Dict[str, Any]],
    barcode_url: Optional[str],
    recall: Dict[str, Any],
    guidance: Optional[StorageGuidance],
    sustainability: Dict[str, Any],
    safety_score: int,
    safety_flag: str,
    summary: str,
    trace: List[Dict[str, Any]],
) -> SafetyReport:
    found = bool(product and product.get("found"))
    allergens = list((product or {}).get("allergens_tags") or []) if found else []
    has_recall = bool(recall.get("has_recall"))
    sources: List[Source] = []
    if found and barcode_url:
        sources.append(Source(title=BARCODE_SOURCE_TITLE, uri=barcode_url))
    sources.append(RECALL_SOURCE)
    if guidance is not None:
        storage_step = (
            f"Follow storage: {guidance.fridge_days} days in fridge; {guidance.freezer_months} months frozen."
        )
    else:
        storage_step = "Keep refrigerated if perishable."
    return SafetyReport(
        session_id=session_id,
        product_name=product_name,
        ingredient_list=split_ingredients((product or {}).get("ingredients_text") if found else ""),
        allergen_risk=allergen_risk_text(allergens),
        safety_score=safety_score,
        safety_flag=safety_flag,
        sustainability_score=sustainability["score"],
        sustainability_flag=sustainability["flag"],
        explanation_short=summary,
        explanation_detailed=guidance.notes if guidance is not None else DEFAULT_STORAGE_ADVICE,
        alternatives=list(GENERIC_ALTERNATIVES) if safety_flag in ("Unsafe", "Caution") else [],
        next_steps=[
            "Do not consume; check recall details." if has_recall else "Inspect packaging and consume within safe dates.",
            storage_step,
        ],
        sources=sources,
        trace=trace,
    )


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    if not text or not text.strip():
        return None
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except ValueError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(cleaned[start : end + 1])
        except ValueError:
            return None
    return data if isinstance(data, dict) else None


def merge_sources(existing: Iterable[Source], extra: Iterable[Dict[str, Any]]) -> List[Source]:
    merged: List[Source] = []
    seen = set()
    for src in list(existing) + [Source(**s) for s in extra if isinstance(s, dict) and s.get("uri")]:
        if src.uri in seen:
            continue
        seen.add(src.uri)
        merged.append(src)
    return merged


def _string_items(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def _clean_entries(value: Any, key: str) -> List[Dict[str, str]]:
    """Keep dict entries that carry ``key``; null fields fall back to their defaults."""
    if not isinstance(value, list):
        return []
    cleaned: List[Dict[str, str]] = []
    for entry in value:
        if not isinstance(entry, dict) or not entry.get(key):
            continue
        cleaned.append({k: str(v) for k, v in entry.items() if v is not None})
    return cleaned


def normalize_agent_report(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop nulls and incomplete list entries so model output validates against SafetyReport."""
    normalized = {k: v for k, v in data.items() if v is not None}
    for key in ("ingredient_list", "next_steps"):
        if key in normalized:
            normalized[key] = _string_items(normalized[key])
    if "alternatives" in normalized:
        normalized["alternatives"] = _clean_entries(normalized["alternatives"], "name")
    if "sources" in normalized:
        normalized["sources"] = _clean_entries(normalized["sources"], "uri")
    return normalized


def report_from_agent_output(
    content: Optional[str],
    session_id: str,
    tool_sources: Iterable[Dict[str, Any]],
    trace: List[Dict[str, Any]],
) -> SafetyReport:
    data = parse_json_object(content)
    if data is None:
        raise AgentReportError("Agent failed to generate report")
    data = {**normalize_agent_report(data), "session_id": session_id, "trace": trace}
    try:
        report = SafetyReport.model_validate(data)
    except ValidationError as exc:
        raise AgentReportError(f"Agent failed to generate report: {exc.error_count()} invalid field(s)") from exc
    report.sources = merge_sources(report.sources, tool_sources)
    return report
