from typing import Any, Dict, Optional

import httpx


class StarterPackError(RuntimeError):
    pass


class StarterPackClient:
    """Delegates a whole run to a remote Agent Starter Pack backend (POST {base}/run)."""

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.enabled:
            raise StarterPackError("Starter Pack URL is not configured")
        try:
            resp = await self.client.post(f"{self.base_url}/run", json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise StarterPackError(f"Starter Pack error {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise StarterPackError(f"Starter Pack unreachable: {e}") from e
        except ValueError as e:
            raise StarterPackError("Starter Pack returned invalid JSON") from e
        if not isinstance(data, dict):
            raise StarterPackError("Starter Pack returned a non-object response")
        return data

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
