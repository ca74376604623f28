"""Career Relay 顶层包。

该包提供求职助手后端的核心实现：
配置加载、领域模型、多厂商 Provider 适配、流式中转（SSE）、
套餐与用量校验、提示词模板以及 HTTP 接口。
"""

from career_relay.domain.models import ConversationTurn, ProviderCredential
from career_relay.relay import StreamRelay

__all__ = ["ConversationTurn", "ProviderCredential", "StreamRelay"]
