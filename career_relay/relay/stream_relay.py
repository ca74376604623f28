"""流式中转核心模块。

StreamRelay 接收 system prompt、历史对话、本轮用户消息和可选凭据，
选择唯一的 Provider 发起调用，把厂商的增量文本转换为统一 SSE 帧：

    dispatching -> streaming -> completed  （最后一帧为 [DONE]）
                             -> failed     （最后一帧为 error）

文本帧为增量模式：每帧只包含新产生的片段，按顺序拼接即为完整回答。
厂商异常在调用边界被捕获并转换为错误帧，不会抛给调用方；
调用方停止迭代（aclose/取消）时，底层连接随上下文管理器一起释放。
"""

from contextlib import aclosing
from typing import Callable, Optional, Sequence

from career_relay.config.settings import settings as default_settings
from career_relay.domain.exceptions import BusinessError, RelayError
from career_relay.domain.models import ConversationTurn, ProviderCredential, RelayRequest, RelayState
from career_relay.infrastructure.logging.logger import logger
from career_relay.providers import create_provider, resolve_model
from career_relay.providers.base import ProviderClient
from career_relay.relay.framing import encode_done, encode_error, encode_text


ProviderFactory = Callable[[Optional[ProviderCredential], object], ProviderClient]


def _error_message(exc: Exception) -> str:
    if isinstance(exc, BusinessError):
        return exc.message
    return str(exc) or "Unknown error"


class RelayStream:
    """单次流式调用，按需拉取的 SSE 帧异步迭代器。

    - state: 当前状态（RelayState）。
    - chunks: 已转发的文本帧数量。

    provider/request 为 None 时表示调度阶段已失败，迭代只产出一条错误帧。
    未到终态就被 aclose（客户端断开）时记一条 relay.cancelled，不产出任何帧。
    """

    def __init__(
        self,
        provider: Optional[ProviderClient],
        request: Optional[RelayRequest],
        provider_name: str,
        model: Optional[str],
        setup_error: Optional[Exception] = None,
    ):
        self.state = RelayState.DISPATCHING
        self.chunks = 0
        self.provider_name = provider_name
        self.model = model
        self._provider = provider
        self._request = request
        self._setup_error = setup_error
        self._frames = self._run()
        self._closed = False

    def __aiter__(self) -> "RelayStream":
        return self

    async def __anext__(self) -> str:
        return await self._frames.__anext__()

    async def aclose(self) -> None:
        await self._frames.aclose()
        if self._closed:
            return
        self._closed = True
        if not self.state.is_terminal:
            logger.info(
                "relay.cancelled",
                extra={"extra": {"provider": self.provider_name, "model": self.model, "chunks": self.chunks}},
            )

    async def _run(self):
        log_ctx = {"provider": self.provider_name, "model": self.model}
        try:
            if self._setup_error is not None:
                raise self._setup_error
            logger.info("relay.dispatch", extra={"extra": {**log_ctx, "turns": len(self._request.turns)}})
            self.state = RelayState.STREAMING
            async with aclosing(self._provider.stream_text(self._request)) as texts:
                async for text in texts:
                    self.chunks += 1
                    yield encode_text(text)
        except Exception as exc:
            self.state = RelayState.FAILED
            logger.error("relay.failed", extra={"extra": {**log_ctx, "error": _error_message(exc), "chunks": self.chunks}})
            yield encode_error(_error_message(exc))
            return
        self.state = RelayState.COMPLETED
        logger.info("relay.completed", extra={"extra": {**log_ctx, "chunks": self.chunks}})
        yield encode_done()


class StreamRelay:
    """多厂商流式中转。

    settings 在构造时注入（默认取进程级配置），其中的默认密钥只读；
    provider_factory 可替换，便于测试中注入假的 Provider。
    """

    def __init__(self, settings=None, provider_factory: ProviderFactory = create_provider):
        self._settings = settings or default_settings
        self._provider_factory = provider_factory

    def stream(
        self,
        system_prompt: str,
        prior_turns: Sequence[ConversationTurn] = (),
        user_message: str = "",
        credential: Optional[ProviderCredential] = None,
    ) -> RelayStream:
        """发起一次流式调用，返回 SSE 帧的异步迭代器。

        调度失败（如默认密钥缺失、未知厂商）同样以错误帧结束，
        而不是直接抛出异常。
        """

        provider_name = credential.provider if credential else "anthropic"
        try:
            request = self._build_request(system_prompt, prior_turns, user_message, credential)
            provider = self._provider_factory(credential, self._settings)
        except Exception as exc:
            model = credential.model if credential else None
            return RelayStream(None, None, provider_name, model, setup_error=exc)
        return RelayStream(provider, request, provider_name, request.model)

    async def complete(
        self,
        system_prompt: str,
        prior_turns: Sequence[ConversationTurn] = (),
        user_message: str = "",
        credential: Optional[ProviderCredential] = None,
    ) -> str:
        """非流式调用，返回完整文本；失败时抛出 RelayError。"""

        log_ctx = {"provider": credential.provider if credential else "anthropic", "stream": False}
        try:
            request = self._build_request(system_prompt, prior_turns, user_message, credential)
            log_ctx["model"] = request.model
            provider = self._provider_factory(credential, self._settings)
            logger.info("relay.dispatch", extra={"extra": {**log_ctx, "turns": len(request.turns)}})
            text = await provider.complete(request)
        except BusinessError as exc:
            logger.error("relay.failed", extra={"extra": {**log_ctx, "error": exc.message}})
            raise RelayError(code=exc.code, message=exc.message, http_status=502, **log_ctx) from exc
        except Exception as exc:
            logger.error("relay.failed", extra={"extra": {**log_ctx, "error": _error_message(exc)}})
            raise RelayError(code="RELAY_ERROR", message=_error_message(exc), http_status=502, **log_ctx) from exc
        logger.info("relay.completed", extra={"extra": {**log_ctx, "length": len(text)}})
        return text

    def _build_request(
        self,
        system_prompt: str,
        prior_turns: Sequence[ConversationTurn],
        user_message: str,
        credential: Optional[ProviderCredential],
    ) -> RelayRequest:
        return RelayRequest.assemble(
            provider=credential.provider if credential else "anthropic",
            model=resolve_model(credential),
            system_prompt=system_prompt,
            prior_turns=prior_turns,
            user_message=user_message,
            max_tokens=getattr(self._settings, "max_tokens", 4096),
        )
