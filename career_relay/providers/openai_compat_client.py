"""OpenAI 兼容协议 Provider 适配器（OpenAI / DeepSeek）。

两家接口风格一致，均使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>
- 流式: 请求体带 stream=true，响应为 `data: <json>` 行，以 `data: [DONE]` 结束。

system prompt 作为首条 system 消息发送；增量文本取 choices[0].delta.content。
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from career_relay.config.settings import settings as default_settings
from career_relay.domain.exceptions import ApiError, NetworkError, RateLimitError
from career_relay.domain.models import RelayRequest
from career_relay.providers.registry import ProviderConfig, get_provider_config
from career_relay.providers.sse import iter_text_deltas


class OpenAICompatClient:
    """OpenAI 兼容协议客户端，name 为 "openai" 或 "deepseek"。"""

    def __init__(self, api_key: str, provider: str = "openai", settings=default_settings):
        self._api_key = api_key
        self._settings = settings
        self._config: ProviderConfig = get_provider_config(provider)
        self.name = self._config.name

    @property
    def base_url(self) -> str:
        base = getattr(self._settings, f"{self.name}_base_url", None) or self._config.base_url
        return base.rstrip("/")

    # ---- 流式 ----

    async def stream_text(self, req: RelayRequest) -> AsyncIterator[str]:
        payload = self._build_payload(req, stream=True)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        self._raise_for_status(resp.status_code, body)
                    async for text in iter_text_deltas(resp.aiter_lines(), self.name, self._delta_text):
                        yield text
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, provider=self.name)

    # ---- 非流式 ----

    async def complete(self, req: RelayRequest) -> str:
        payload = self._build_payload(req, stream=False)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, provider=self.name)
        if resp.status_code >= 400:
            self._raise_for_status(resp.status_code, resp.text)
        data = resp.json()
        return self._message_text(data) or ""

    # ---- 辅助方法 ----

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, req: RelayRequest, stream: bool) -> dict:
        msgs: List[Dict[str, Any]] = [{"role": "system", "content": req.system_prompt}]
        msgs.extend({"role": t.role, "content": t.content} for t in req.turns)
        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": msgs,
            "max_tokens": req.max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    def _raise_for_status(self, status: int, body: str) -> None:
        if status == 429:
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit", http_status=429, provider=self.name)
        raise ApiError(
            code="API_ERROR",
            message=f"API error {status}: {body}",
            http_status=status,
            provider=self.name,
        )

    @staticmethod
    def _first_choice(data: Any, key: str) -> Optional[Dict[str, Any]]:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        part = choices[0].get(key)
        return part if isinstance(part, dict) else None

    @classmethod
    def _delta_text(cls, event: Any) -> Optional[str]:
        """取 choices[0].delta.content，结构不符时返回 None。"""
        delta = cls._first_choice(event, "delta")
        content = delta.get("content") if delta else None
        return content if isinstance(content, str) else None

    @classmethod
    def _message_text(cls, data: Any) -> Optional[str]:
        message = cls._first_choice(data, "message")
        content = message.get("content") if message else None
        return content if isinstance(content, str) else None
