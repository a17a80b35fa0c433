import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from . import prompts


logger = logging.getLogger("uvicorn.error")

ALLOWED_ROLES = {"system", "user", "assistant", "tool"}
SUMMARY_ECHO_CHARS = 120
SUMMARY_EMPTY_CHARS = 160


def fallback_summary(text: str, reason: str = "") -> str:
    prefix = f"Summary unavailable ({reason})." if reason else "Summary unavailable."
    return f"{prefix} Input: {(text or '')[:SUMMARY_ECHO_CHARS]}"


def message_from_response(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return {}
    message = choices[0].get("message") or {}
    return message if isinstance(message, dict) else {}


class LLMClient:
    """Client for an OpenAI-compatible /chat/completions endpoint with tool calling."""

    def __init__(
        self,
        base_url: Optional[str],
        model: str,
        api_key: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        timeout: float = 60.0,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.model = model
        self.api_key = api_key
        self.max_output_tokens = max_output_tokens
        self.client = httpx.AsyncClient(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.model)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _sanitize_messages(self, messages: Any) -> List[Dict[str, Any]]:
        if not isinstance(messages, list):
            return []
        sanitized: List[Dict[str, Any]] = []
        for msg in messages:
            if not isinstance(msg, dict):
                continue
            role = msg.get("role")
            if role not in ALLOWED_ROLES:
                continue
            content = msg.get("content")
            tool_calls = msg.get("tool_calls")
            # Assistant turns that only request tools carry no content.
            if role == "assistant" and tool_calls:
                sanitized.append({"role": role, "content": content or "", "tool_calls": tool_calls})
                continue
            if content is None:
                continue
            if isinstance(content, str):
                if not content.strip():
                    continue
            elif isinstance(content, list):
                content = [
                    item
                    for item in content
                    if isinstance(item, dict) and item.get("type") and (item.get("text") or item.get("image_url"))
                ]
                if not content:
                    continue
            else:
                content = json.dumps(content, ensure_ascii=True)
            cleaned: Dict[str, Any] = {"role": role, "content": content}
            if role == "tool":
                cleaned["tool_call_id"] = msg.get("tool_call_id") or ""
            sanitized.append(cleaned)
        return sanitized

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                return json.dumps(data, ensure_ascii=True)
        except Exception:
            pass
        try:
            return response.text
        except Exception:
            return ""

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int = 512,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Any] = None,
        response_format: Optional[dict] = None,
    ) -> Dict[str, Any]:
        """Send one chat turn. Transport and HTTP errors propagate to the caller."""
        if not self.enabled:
            raise RuntimeError("LLM endpoint is not configured.")
        final_max_tokens = max_tokens
        if self.max_output_tokens:
            final_max_tokens = min(max_tokens, self.max_output_tokens)
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self._sanitize_messages(messages),
            "temperature": temperature,
            "max_tokens": final_max_tokens,
            "stream": False,
        }
        if not payload["messages"]:
            raise ValueError("messages must include at least one non-empty entry")
        if tools:
            payload["tools"] = tools
            if tool_choice is not None:
                payload["tool_choice"] = tool_choice
        if response_format:
            payload["response_format"] = response_format
        try:
            resp = await self.client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(),
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("LLM request rejected (%s): %s", exc.response.status_code, self._extract_error_detail(exc.response))
            raise
        data = resp.json()
        message = message_from_response(data)
        if message and not message.get("content"):
            # Reasoning models sometimes leave content empty and put the text elsewhere.
            fallback = message.get("reasoning") or message.get("reasoning_content")
            if fallback and not message.get("tool_calls"):
                message["content"] = fallback
        return data

    async def summarize(self, text: str, language: str = "English", max_tokens: int = 180) -> str:
        """Short narrative summary; never raises."""
        if not self.enabled:
            return fallback_summary(text, "no model configured")
        try:
            data = await self.chat_completion(
                messages=[
                    {"role": "system", "content": prompts.summary_system_prompt(language)},
                    {"role": "user", "content": text},
                ],
                temperature=0.4,
                max_tokens=max_tokens,
            )
        except Exception as exc:
            logger.warning("LLM summary failed: %s", exc)
            return fallback_summary(text)
        content = message_from_response(data).get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
        return (text or "")[:SUMMARY_EMPTY_CHARS]

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
