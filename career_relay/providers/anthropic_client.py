"""Anthropic Provider 适配器。

使用官方 SDK（AsyncAnthropic）的原生流式接口：
订阅 messages.stream 的事件，只转发 content_block_delta / text_delta 的文本。

SDK 异常在这里映射为统一的业务异常：
- APIConnectionError（含超时） -> NetworkError
- RateLimitError                -> RateLimitError
- APIStatusError                -> ApiError
"""

from typing import AsyncIterator, Dict, List

import anthropic

from career_relay.config.settings import settings as default_settings
from career_relay.domain.exceptions import ApiError, NetworkError, RateLimitError
from career_relay.domain.models import RelayRequest


class AnthropicClient:
    """Anthropic 客户端实现，未携带 BYOK 凭据时的默认 Provider。"""

    name = "anthropic"

    def __init__(self, api_key: str, settings=default_settings):
        self._api_key = api_key
        self._settings = settings

    def _client(self) -> "anthropic.AsyncAnthropic":
        kwargs = {"api_key": self._api_key, "timeout": self._settings.http_timeout}
        base = getattr(self._settings, "anthropic_base_url", None)
        if base:
            kwargs["base_url"] = base
        return anthropic.AsyncAnthropic(**kwargs)

    async def stream_text(self, req: RelayRequest) -> AsyncIterator[str]:
        try:
            async with self._client() as client:
                async with client.messages.stream(
                    model=req.model,
                    max_tokens=req.max_tokens,
                    system=req.system_prompt,
                    messages=self._messages(req),
                ) as stream:
                    async for event in stream:
                        if event.type == "content_block_delta" and event.delta.type == "text_delta":
                            if event.delta.text:
                                yield event.delta.text
        except anthropic.APIError as e:
            raise self._translate(e)

    async def complete(self, req: RelayRequest) -> str:
        try:
            async with self._client() as client:
                message = await client.messages.create(
                    model=req.model,
                    max_tokens=req.max_tokens,
                    system=req.system_prompt,
                    messages=self._messages(req),
                )
        except anthropic.APIError as e:
            raise self._translate(e)
        # 与流式结果保持一致：拼接所有 text block
        return "".join(block.text for block in message.content if block.type == "text")

    @staticmethod
    def _messages(req: RelayRequest) -> List[Dict[str, str]]:
        return [{"role": t.role, "content": t.content} for t in req.turns]

    def _translate(self, exc: "anthropic.APIError") -> Exception:
        if isinstance(exc, anthropic.APIConnectionError):
            return NetworkError(code="NETWORK_ERROR", message=str(exc), provider=self.name)
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimitError(code="RATE_LIMIT", message="Anthropic rate limit", http_status=429, provider=self.name)
        if isinstance(exc, anthropic.APIStatusError):
            return ApiError(
                code="API_ERROR",
                message=f"API error {exc.status_code}: {exc.message}",
                http_status=exc.status_code,
                provider=self.name,
            )
        return ApiError(code="API_ERROR", message=str(exc), provider=self.name)
