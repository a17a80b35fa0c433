from typing import Any, Dict, Optional

import httpx


class OpenFDAClient:
    ENFORCEMENT_URL = "https://api.fda.gov/food/enforcement.json"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def search_recalls(self, query: str) -> Dict[str, Any]:
        cleaned = " ".join(str(query or "").replace('"', " ").split())
        if not cleaned:
            return {"has_recall": False}
        params = {"search": f'product_description:"{cleaned}"', "limit": "1"}
        if self.api_key:
            params["api_key"] = self.api_key
        try:
            resp = await self.client.get(self.ENFORCEMENT_URL, params=params)
            # openFDA answers 404 when the search matches nothing.
            if resp.status_code == 404:
                return {"has_recall": False}
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            return {"error": "openfda_error", "has_recall": False, "status_code": e.response.status_code}
        except httpx.RequestError as e:
            return {"error": "openfda_error", "has_recall": False, "detail": str(e)}
        except ValueError:
            return {"error": "openfda_error", "has_recall": False, "detail": "invalid JSON"}
        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            return {"has_recall": False}
        first = results[0] or {}
        return {
            "has_recall": True,
            "details": first.get("reason_for_recall") or "Recall found",
            "recalling_firm": first.get("recalling_firm"),
            "status": first.get("status"),
            "recall_initiation_date": first.get("recall_initiation_date"),
        }

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
