from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


StepStatus = Literal["pending", "running", "completed", "error"]
InputType = Literal["text", "image", "barcode", "recipe"]
SafetyFlag = Literal["Unsafe", "Caution", "Low risk"]

UNSAFE_BELOW = 40
CAUTION_BELOW = 70


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def clamp_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        score = 0
    return max(0, min(100, score))


def safety_flag_for_score(score: int) -> str:
    if score < UNSAFE_BELOW:
        return "Unsafe"
    if score < CAUTION_BELOW:
        return "Caution"
    return "Low risk"


class StepEvent(BaseModel):
    id: str
    label: str
    status: StepStatus = "running"
    timestamp: str = Field(default_factory=utc_iso)
    details: Optional[str] = None


class UserPrefs(BaseModel):
    user_language: str = "English"
    diet_restriction: str = "none"
    location: str = ""


class RunRequest(BaseModel):
    input_type: InputType = "text"
    raw_text: Optional[str] = None
    barcode: Optional[str] = None
    recipe: Optional[str] = None
    image_base64: Optional[str] = None
    mime_type: Optional[str] = None
    user_prompt: Optional[str] = None
    prefs: UserPrefs = Field(default_factory=UserPrefs)

    model_config = {"extra": "allow"}

    @model_validator(mode="after")
    def _require_active_payload(self) -> "RunRequest":
        if self.input_type == "barcode" and not (self.barcode or "").strip():
            raise ValueError("barcode input requires 'barcode'")
        if self.input_type == "image":
            if not self.image_base64:
                raise ValueError("image input requires 'image_base64'")
            if not self.mime_type:
                self.mime_type = "image/jpeg"
        if self.input_type == "recipe" and not (self.recipe or self.raw_text or "").strip():
            raise ValueError("recipe input requires 'recipe' or 'raw_text'")
        if self.input_type == "text" and not (self.raw_text or self.user_prompt or "").strip():
            raise ValueError("text input requires 'raw_text' or 'user_prompt'")
        return self

    def primary_text(self) -> str:
        """The one textual payload that is active for this input kind."""
        if self.input_type == "barcode":
            return (self.barcode or "").strip()
        if self.input_type == "recipe":
            return (self.recipe or self.raw_text or "").strip()
        return (self.raw_text or self.user_prompt or "").strip()

    def forward_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Alternative(BaseModel):
    name: str
    why: str = ""
    taste_similarity: str = ""


class Source(BaseModel):
    title: str = ""
    uri: str


class SafetyReport(BaseModel):
    session_id: str = ""
    product_name: str
    ingredient_list: List[str] = Field(default_factory=list)
    allergen_risk: str = ""
    safety_score: int
    safety_flag: SafetyFlag = "Low risk"
    sustainability_score: int = 55
    sustainability_flag: str = "Medium"
    explanation_short: str = ""
    explanation_detailed: str = ""
    alternatives: List[Alternative] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    sources: List[Source] = Field(default_factory=list)
    trace: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("safety_score", "sustainability_score", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_score(value)

    @field_validator("safety_flag", mode="before")
    @classmethod
    def _any_flag(cls, value: Any) -> str:
        # Re-derived from the score below; accept whatever the producer sent.
        return "Low risk"

    @model_validator(mode="after")
    def _derive_flag(self) -> "SafetyReport":
        self.safety_flag = safety_flag_for_score(self.safety_score)
        if self.safety_flag == "Low risk":
            self.alternatives = []
        return self


class VoiceRequest(BaseModel):
    text: str
