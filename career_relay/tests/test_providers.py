import pytest

from career_relay.domain.exceptions import ConfigurationError, ValidationError
from career_relay.domain.models import ProviderCredential
from career_relay.providers import create_provider, resolve_model
from career_relay.providers.anthropic_client import AnthropicClient
from career_relay.providers.gemini_client import GeminiClient
from career_relay.providers.openai_compat_client import OpenAICompatClient
from career_relay.providers.registry import get_provider_config

from fakes import SettingsStub


def test_create_provider_default():
    provider = create_provider(None, SettingsStub())
    assert isinstance(provider, AnthropicClient)
    assert provider._api_key == "sk-ant-default-key"


def test_create_provider_default_requires_key():
    cfg = SettingsStub()
    cfg.anthropic_api_key = None
    with pytest.raises(ConfigurationError):
        create_provider(None, cfg)


@pytest.mark.parametrize(
    "name, cls",
    [
        ("anthropic", AnthropicClient),
        ("openai", OpenAICompatClient),
        ("deepseek", OpenAICompatClient),
        ("gemini", GeminiClient),
    ],
)
def test_create_provider_explicit(name, cls):
    cred = ProviderCredential(provider=name, api_key="user-key-0123456")
    provider = create_provider(cred, SettingsStub())
    assert isinstance(provider, cls)
    assert provider.name == name
    # 凭据整体替换默认密钥
    assert provider._api_key == "user-key-0123456"


def test_create_provider_unknown():
    with pytest.raises(ValidationError):
        create_provider(ProviderCredential(provider="mistral", api_key="x" * 12), SettingsStub())


def test_resolve_model():
    assert resolve_model(None) == "claude-sonnet-4-6"
    assert resolve_model(ProviderCredential(provider="openai", api_key="k")) == "gpt-4o"
    assert resolve_model(ProviderCredential(provider="gemini", api_key="k")) == "gemini-1.5-flash"
    assert resolve_model(ProviderCredential(provider="gemini", api_key="k", model="gemini-2.0-pro")) == "gemini-2.0-pro"


def test_registry_lookup_is_case_insensitive():
    assert get_provider_config("DeepSeek").default_model == "deepseek-chat"
    with pytest.raises(KeyError):
        get_provider_config("nope")


def test_credential_repr_hides_key():
    cred = ProviderCredential(provider="openai", api_key="sk-secret-value", model="m1")
    assert "sk-secret-value" not in repr(cred)
