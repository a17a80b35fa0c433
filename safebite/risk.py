"""Deterministic safety and sustainability scoring used by the local pipeline."""

from typing import Any, Dict, Iterable, Optional, Tuple

from .foodkeeper import StorageGuidance
from .schemas import clamp_score, safety_flag_for_score

RECALL_PENALTY = 40
ALLERGEN_PENALTY = 20
STORAGE_RISK_PENALTY = 10
RISK_KEYWORDS = ("risk",)

# Priority order matters: the first rule with a matching keyword wins.
SUSTAINABILITY_RULES: Tuple[Tuple[Tuple[str, ...], int, str, str], ...] = (
    (("beef", "lamb"), 25, "High impact", "High carbon footprint"),
    (("pork", "cheese"), 45, "Medium-high", "Medium-high impact"),
    (("chicken", "poultry", "egg"), 65, "Medium", "Medium impact"),
    (("plant", "vegetable", "fruit", "grain", "bean"), 90, "Low", "Low environmental impact"),
)
SUSTAINABILITY_DEFAULT = (55, "Medium", "Moderate impact (general)")


def sustainability_score(text: Optional[str]) -> Dict[str, Any]:
    lowered = (text or "").lower()
    for keywords, score, flag, impact in SUSTAINABILITY_RULES:
        if any(word in lowered for word in keywords):
            return {"score": score, "flag": flag, "impact": impact}
    score, flag, impact = SUSTAINABILITY_DEFAULT
    return {"score": score, "flag": flag, "impact": impact}


def has_risk_keyword(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(word in lowered for word in RISK_KEYWORDS)


def compute_safety(
    has_recall: bool,
    allergens: Iterable[str],
    guidance: Optional[StorageGuidance],
) -> Tuple[int, str]:
    score = 100
    if has_recall:
        score -= RECALL_PENALTY
    if any(allergens):
        score -= ALLERGEN_PENALTY
    if guidance is not None and has_risk_keyword(guidance.notes):
        score -= STORAGE_RISK_PENALTY
    score = clamp_score(score)
    return score, safety_flag_for_score(score)
