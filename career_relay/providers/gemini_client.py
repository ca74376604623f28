"""Gemini Provider 适配器。

- 流式 URL: {base_url}/models/{model}:streamGenerateContent?alt=sse
- 非流式 URL: {base_url}/models/{model}:generateContent
- 认证: x-goog-api-key 请求头（避免密钥出现在 URL 与日志中）

请求体：system_instruction + contents（assistant 角色映射为 model）+ generationConfig。
每个事件的文本位于 candidates[0].content.parts[0].text。
"""

from typing import Any, AsyncIterator, Dict, Optional

import httpx

from career_relay.config.settings import settings as default_settings
from career_relay.domain.exceptions import ApiError, NetworkError, RateLimitError
from career_relay.domain.models import RelayRequest
from career_relay.providers.registry import GEMINI_CONFIG
from career_relay.providers.sse import iter_text_deltas


class GeminiClient:
    """Gemini 客户端实现。"""

    name = "gemini"

    def __init__(self, api_key: str, settings=default_settings):
        self._api_key = api_key
        self._settings = settings

    @property
    def base_url(self) -> str:
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        return base.rstrip("/")

    async def stream_text(self, req: RelayRequest) -> AsyncIterator[str]:
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/models/{req.model}:streamGenerateContent",
                    params={"alt": "sse"},
                    json=self._build_payload(req),
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        self._raise_for_status(resp.status_code, body)
                    async for text in iter_text_deltas(resp.aiter_lines(), self.name, self._candidate_text):
                        yield text
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, provider=self.name)

    async def complete(self, req: RelayRequest) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{self.base_url}/models/{req.model}:generateContent",
                    json=self._build_payload(req),
                    headers=self._headers(),
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, provider=self.name)
        if resp.status_code >= 400:
            self._raise_for_status(resp.status_code, resp.text)
        return self._candidate_text(resp.json()) or ""

    def _headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _build_payload(req: RelayRequest) -> dict:
        contents = [
            {
                "role": "model" if t.role == "assistant" else "user",
                "parts": [{"text": t.content}],
            }
            for t in req.turns
        ]
        return {
            "system_instruction": {"parts": [{"text": req.system_prompt}]},
            "contents": contents,
            "generationConfig": {"maxOutputTokens": req.max_tokens},
        }

    def _raise_for_status(self, status: int, body: str) -> None:
        if status == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Gemini rate limit", http_status=429, provider=self.name)
        raise ApiError(
            code="API_ERROR",
            message=f"Gemini API error {status}: {body}",
            http_status=status,
            provider=self.name,
        )

    @staticmethod
    def _candidate_text(data: Any) -> Optional[str]:
        """取 candidates[0].content.parts[0].text，结构不符时返回 None。"""

        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return None
        content = candidates[0].get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
            return None
        text = parts[0].get("text")
        return text if isinstance(text, str) else None
