from typing import Any, Dict, List, Optional

import httpx


NEWS_QUERY_TEMPLATE = (
    "recent food safety alerts, outbreaks (E. coli, Salmonella, Listeria) or recalls involving {query}"
)


class TavilyClient:
    def __init__(self, api_key: Optional[str], timeout: float = 10.0):
        self.api_key = api_key
        self.client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=16, max_keepalive_connections=8),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        query: str,
        search_depth: str = "basic",
        max_results: int = 5,
        topic: Optional[str] = None,
        time_range: Optional[str] = None,
        include_answer: bool = False,
    ) -> Dict[str, Any]:
        if not self.enabled:
            return {"error": "missing_api_key"}
        allowed_topics = {"general", "news", "finance"}
        if topic:
            cleaned = str(topic).strip().lower()
            topic = cleaned if cleaned in allowed_topics else None
        payload: Dict[str, Any] = {
            "query": query,
            "search_depth": search_depth,
            "max_results": max_results,
        }
        if topic:
            payload["topic"] = topic
        if time_range:
            payload["time_range"] = time_range
        if include_answer:
            payload["include_answer"] = True
        return await self._post("https://api.tavily.com/search", payload)

    async def news_search(self, query: str, max_results: int = 5) -> Dict[str, Any]:
        """Search recent news for outbreaks and return a summary plus cited sources."""
        resp = await self.search(
            NEWS_QUERY_TEMPLATE.format(query=query),
            max_results=max_results,
            topic="news",
            time_range="month",
            include_answer=True,
        )
        if resp.get("error"):
            return resp
        results: List[Dict[str, Any]] = [r for r in resp.get("results") or [] if isinstance(r, dict)]
        sources = [
            {"title": r.get("title") or r.get("url") or "", "uri": r["url"]}
            for r in results
            if r.get("url")
        ]
        summary = resp.get("answer") or " ".join(
            (r.get("content") or "").strip() for r in results[:3] if r.get("content")
        )
        return {"news_summary": summary or "No recent food safety news found.", "sources": sources}

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Shared POST helper with minimal response handling."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            # Tavily's dev keys expect the key in the JSON payload; include it there and keep the header for compatibility.
            payload = {**payload, "api_key": self.api_key}
            headers["X-API-Key"] = self.api_key
        try:
            resp = await self.client.post(
                url,
                json=payload,
                headers=headers,
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            detail: Any
            try:
                detail = e.response.json()
            except Exception:
                detail = e.response.text
            return {"error": "http_status", "status_code": e.response.status_code, "detail": detail}
        except httpx.RequestError as e:
            return {"error": "request_failed", "detail": str(e)}

    async def close(self) -> None:
        # Safe to call multiple times
        if not self.client.is_closed:
            await self.client.aclose()
