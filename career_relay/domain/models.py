"""统一的对话与中转数据模型。

本模块定义了 Relay 在不同 Provider 之间共享的标准数据结构：

- ConversationTurn: 一条历史对话（user/assistant）。
- ProviderCredential: 调用方自带的厂商凭据（BYOK），整体替换默认凭据。
- RelayRequest: 发给底层 Provider 的完整请求（已拼接本轮用户消息）。
- RelayState: 单次调用的状态机。

所有 Provider 适配器都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal, Optional, Sequence, Tuple


# 历史消息角色（system prompt 单独传递，不出现在 turns 里）
Role = Literal["user", "assistant"]

# 支持的厂商标识
ProviderName = Literal["anthropic", "openai", "deepseek", "gemini"]

PROVIDER_NAMES: Tuple[str, ...] = ("anthropic", "openai", "deepseek", "gemini")


@dataclass(frozen=True)
class ConversationTurn:
    """一条历史对话消息，按时间先后排列（最旧在前）。"""

    role: Role
    content: str


@dataclass(frozen=True)
class ProviderCredential:
    """调用方提供的厂商凭据。

    - provider: 厂商标识，见 PROVIDER_NAMES。
    - api_key: 密钥，不会写入日志。
    - model: 可选模型 ID；为空时使用该厂商的默认模型。
    """

    provider: ProviderName
    api_key: str
    model: Optional[str] = None

    def __repr__(self) -> str:
        return f"ProviderCredential(provider={self.provider!r}, model={self.model!r})"


@dataclass
class RelayRequest:
    """一次完整的中转请求。

    turns 已经包含本轮的 user 消息（位于末尾）；
    model/max_tokens 已由 Relay 根据凭据和配置解析完毕。
    """

    provider: ProviderName
    model: str
    system_prompt: str
    turns: List[ConversationTurn] = field(default_factory=list)
    max_tokens: int = 4096

    @classmethod
    def assemble(
        cls,
        provider: ProviderName,
        model: str,
        system_prompt: str,
        prior_turns: Sequence[ConversationTurn],
        user_message: str,
        max_tokens: int,
    ) -> "RelayRequest":
        turns = list(prior_turns) + [ConversationTurn(role="user", content=user_message)]
        return cls(
            provider=provider,
            model=model,
            system_prompt=system_prompt,
            turns=turns,
            max_tokens=max_tokens,
        )


class RelayState(str, Enum):
    """单次调用的状态：dispatching -> streaming -> completed | failed。"""

    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RelayState.COMPLETED, RelayState.FAILED)
