import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

DEFAULT_FOODKEEPER_PATH = Path(__file__).parent / "data" / "foodkeeper.json"


class StorageGuidance(BaseModel):
    category: str
    name: str
    notes: str = ""
    fridge_days: Optional[int] = None
    freezer_months: Optional[int] = None


class FoodKeeper:
    """Read-only storage guidance table; first substring match wins."""

    def __init__(self, items: Iterable[StorageGuidance]):
        self.items: List[StorageGuidance] = list(items)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FoodKeeper":
        return cls(StorageGuidance(**item) for item in data.get("items") or [])

    @classmethod
    def from_path(cls, path: Optional[Path] = None) -> "FoodKeeper":
        target = Path(path) if path else DEFAULT_FOODKEEPER_PATH
        return cls.from_dict(json.loads(target.read_text(encoding="utf-8")))

    def lookup(self, name_or_category: Optional[str]) -> Optional[StorageGuidance]:
        lowered = (name_or_category or "").lower().strip()
        if not lowered:
            return None
        for item in self.items:
            if item.category.lower() in lowered or item.name.lower() in lowered:
                return item
        return None
