"""Provider 抽象接口。

Relay 不直接依赖具体厂商的 SDK/HTTP 细节，而是依赖此协议：

- 每种线协议实现一个 ProviderClient（Anthropic、OpenAI 兼容、Gemini）。
- 负责：将 RelayRequest 转成具体 API 请求，并把响应解析为纯文本增量。

Client 内部的异常（NetworkError/ApiError/...）原样抛出，
由 StreamRelay 在调用边界统一转换为 SSE 错误帧。
"""

from typing import AsyncIterator, Protocol

from career_relay.domain.models import RelayRequest


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - stream_text(req): 流式调用，按厂商返回顺序逐段产出文本增量。
    - complete(req): 非流式调用，返回完整文本。
    """

    name: str

    def stream_text(self, req: RelayRequest) -> AsyncIterator[str]:
        ...

    async def complete(self, req: RelayRequest) -> str:
        ...
