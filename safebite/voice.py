from typing import Optional

import httpx


class VoiceError(RuntimeError):
    pass


class ElevenLabsClient:
    """Text-to-speech for the presentation layer; optional and off unless configured."""

    TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
    MODEL_ID = "eleven_multilingual_v2"

    def __init__(self, api_key: Optional[str], voice_id: Optional[str], timeout: float = 30.0):
        self.api_key = api_key
        self.voice_id = voice_id
        self.client = httpx.AsyncClient(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.voice_id)

    async def synthesize(self, text: str) -> bytes:
        if not self.enabled:
            raise VoiceError("Voice not configured")
        if not (text or "").strip():
            raise VoiceError("Text is required")
        payload = {
            "text": text,
            "model_id": self.MODEL_ID,
            "voice_settings": {"stability": 0.4, "similarity_boost": 0.7},
        }
        try:
            resp = await self.client.post(
                self.TTS_URL.format(voice_id=self.voice_id),
                json=payload,
                headers={"Content-Type": "application/json", "xi-api-key": self.api_key or ""},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise VoiceError(f"Voice synthesis failed: {e.response.status_code} {e.response.text}") from e
        except httpx.RequestError as e:
            raise VoiceError(f"Voice synthesis failed: {e}") from e
        return resp.content

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
