import logging
from typing import Any, Awaitable, Callable, Dict, List

from .foodkeeper import FoodKeeper
from .risk import sustainability_score


logger = logging.getLogger("uvicorn.error")

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def _function(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    _function(
        "lookup_product_by_barcode",
        "Get product details (name, ingredients, allergens, categories) from a barcode.",
        {"barcode": {"type": "string", "description": "The barcode number"}},
        ["barcode"],
    ),
    _function(
        "check_food_recalls",
        "Check the FDA enforcement database for official food recalls.",
        {"product_name": {"type": "string", "description": "Product name"}},
        ["product_name"],
    ),
    _function(
        "check_sustainability_impact",
        "Estimate the sustainability impact score (0-100) of a food category.",
        {"category": {"type": "string", "description": "Food category"}},
        ["category"],
    ),
    _function(
        "lookup_storage_guidance",
        "Look up fridge/freezer storage limits and handling notes for a food.",
        {"name": {"type": "string", "description": "Food name or category"}},
        ["name"],
    ),
    _function(
        "check_food_safety_news",
        "Search recent news and reports for outbreaks, viruses or bacteria linked to a food.",
        {
            "query": {
                "type": "string",
                "description": 'The food item or topic to search for (e.g. "raw oysters outbreaks")',
            }
        },
        ["query"],
    ),
]


class ToolRouter:
    """Stateless name -> handler dispatch. Never raises; failures become {"error": ...}."""

    def __init__(self, table: Dict[str, ToolHandler]):
        self.table = dict(table)

    @property
    def names(self) -> List[str]:
        return list(self.table)

    async def execute(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        handler = self.table.get(name)
        if handler is None:
            return {"error": f"unknown tool: {name}"}
        try:
            result = await handler(args if isinstance(args, dict) else {})
        except Exception as exc:
            logger.warning("Tool %s failed: %r", name, exc)
            return {"error": f"{name} failed: {exc!r}"}
        if isinstance(result, dict):
            return result
        return {"result": result}


def build_tool_table(off_client: Any, fda_client: Any, news_client: Any, foodkeeper: FoodKeeper) -> Dict[str, ToolHandler]:
    async def lookup_product_by_barcode(args: Dict[str, Any]) -> Dict[str, Any]:
        return await off_client.lookup(str(args["barcode"]))

    async def check_food_recalls(args: Dict[str, Any]) -> Dict[str, Any]:
        return await fda_client.search_recalls(str(args["product_name"]))

    async def check_sustainability_impact(args: Dict[str, Any]) -> Dict[str, Any]:
        return sustainability_score(str(args["category"]))

    async def lookup_storage_guidance(args: Dict[str, Any]) -> Dict[str, Any]:
        match = foodkeeper.lookup(str(args["name"]))
        if match is None:
            return {"found": False}
        return {"found": True, "guidance": match.model_dump()}

    async def check_food_safety_news(args: Dict[str, Any]) -> Dict[str, Any]:
        return await news_client.news_search(str(args["query"]))

    return {
        "lookup_product_by_barcode": lookup_product_by_barcode,
        "check_food_recalls": check_food_recalls,
        "check_sustainability_impact": check_sustainability_impact,
        "lookup_storage_guidance": lookup_storage_guidance,
        "check_food_safety_news": check_food_safety_news,
    }
