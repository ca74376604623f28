"""Provider 与默认模型配置。

每个厂商登记：
- base_url: 默认 API 地址（可被 settings 中的 *_base_url 覆盖）。
- default_model: 凭据未指定 model 时使用的模型 ID。
- protocol: 流式线协议，决定由哪个 Client 处理。

openai 与 deepseek 共用 OpenAI 兼容协议，只是地址与默认模型不同。"""

from dataclasses import dataclass
from typing import Literal, Mapping, Optional


Protocol = Literal["anthropic", "openai_compat", "gemini"]


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: Optional[str]
    default_model: str
    protocol: Protocol


ANTHROPIC_CONFIG = ProviderConfig(
    name="anthropic",
    base_url=None,  # 使用 SDK 内置地址
    default_model="claude-sonnet-4-6",
    protocol="anthropic",
)

OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    default_model="gpt-4o",
    protocol="openai_compat",
)

DEEPSEEK_CONFIG = ProviderConfig(
    name="deepseek",
    base_url="https://api.deepseek.com/v1",
    default_model="deepseek-chat",
    protocol="openai_compat",
)

GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    default_model="gemini-1.5-flash",
    protocol="gemini",
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "anthropic": ANTHROPIC_CONFIG,
    "openai": OPENAI_CONFIG,
    "deepseek": DEEPSEEK_CONFIG,
    "gemini": GEMINI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
