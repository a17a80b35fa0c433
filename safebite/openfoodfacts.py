from typing import Any, Dict, Optional

import httpx


class OpenFoodFactsClient:
    """Barcode lookup against the public OpenFoodFacts product API."""

    PRODUCT_API = "https://world.openfoodfacts.org/api/v2/product/{barcode}.json"
    PRODUCT_PAGE = "https://world.openfoodfacts.org/product/{barcode}"

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": "SafeBite/0.1 (food risk assessment)"},
        )

    def product_url(self, barcode: str) -> str:
        return self.PRODUCT_PAGE.format(barcode=barcode)

    async def lookup(self, barcode: str) -> Dict[str, Any]:
        cleaned = "".join(ch for ch in str(barcode or "") if ch.isalnum())
        if not cleaned:
            return {"found": False}
        try:
            resp = await self.client.get(self.PRODUCT_API.format(barcode=cleaned))
            if resp.status_code == 404:
                return {"found": False}
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            return {"error": "openfoodfacts_error", "found": False, "status_code": e.response.status_code}
        except httpx.RequestError as e:
            return {"error": "openfoodfacts_error", "found": False, "detail": str(e)}
        except ValueError:
            return {"error": "openfoodfacts_error", "found": False, "detail": "invalid JSON"}
        product = data.get("product") if isinstance(data, dict) else None
        if not product or data.get("status") == 0:
            return {"found": False}
        return {
            "found": True,
            "product_name": product.get("product_name") or "Unknown product",
            "ingredients_text": product.get("ingredients_text") or "",
            "allergens_tags": list(product.get("allergens_tags") or []),
            "categories": product.get("categories") or "",
            "nutriscore": product.get("nutriscore_grade"),
            "nova_group": product.get("nova_group"),
        }

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
