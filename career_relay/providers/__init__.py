"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与默认模型配置 (registry)。
- 提供各线协议的具体实现 (anthropic_client、openai_compat_client、gemini_client)。
"""

from typing import Optional

from career_relay.config.settings import settings as default_settings
from career_relay.domain.exceptions import ConfigurationError, ValidationError
from career_relay.domain.models import ProviderCredential
from career_relay.providers.anthropic_client import AnthropicClient
from career_relay.providers.base import ProviderClient
from career_relay.providers.gemini_client import GeminiClient
from career_relay.providers.openai_compat_client import OpenAICompatClient
from career_relay.providers.registry import ANTHROPIC_CONFIG, get_provider_config


def create_provider(credential: Optional[ProviderCredential] = None, settings=None) -> ProviderClient:
    """根据凭据创建 Provider 实例。

    无凭据时使用配置中的默认 Anthropic 密钥；有凭据时完全使用凭据，
    不与默认密钥混用。
    """

    cfg = settings or default_settings
    if credential is None:
        api_key = getattr(cfg, "anthropic_api_key", None)
        if not api_key:
            raise ConfigurationError(code="MISSING_API_KEY", message="ANTHROPIC_API_KEY not set", http_status=500)
        return AnthropicClient(api_key, settings=cfg)

    try:
        protocol = get_provider_config(credential.provider).protocol
    except KeyError:
        raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {credential.provider!r}")
    if protocol == "anthropic":
        return AnthropicClient(credential.api_key, settings=cfg)
    if protocol == "gemini":
        return GeminiClient(credential.api_key, settings=cfg)
    return OpenAICompatClient(credential.api_key, provider=credential.provider, settings=cfg)


def resolve_model(credential: Optional[ProviderCredential] = None) -> str:
    """凭据指定 model 时原样使用，否则取对应厂商的默认模型。"""

    if credential is None:
        return ANTHROPIC_CONFIG.default_model
    if credential.model:
        return credential.model
    try:
        return get_provider_config(credential.provider).default_model
    except KeyError:
        raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {credential.provider!r}")
