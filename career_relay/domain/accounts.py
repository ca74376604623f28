from dataclasses import dataclass
from datetime import datetime
from typing import ContextManager, Literal, Optional, Protocol

from .models import ProviderCredential, ProviderName


Plan = Literal["free", "pro"]


@dataclass
class Account:
    id: str
    plan: Plan
    usage_count: int
    usage_reset_at: datetime
    custom_provider: Optional[ProviderName] = None
    custom_api_key: Optional[str] = None
    custom_model: Optional[str] = None

    def credential(self) -> Optional[ProviderCredential]:
        """BYOK 凭据；provider 与 api_key 都存在时才生效。"""

        if self.custom_provider and self.custom_api_key:
            return ProviderCredential(
                provider=self.custom_provider,
                api_key=self.custom_api_key,
                model=self.custom_model or None,
            )
        return None


class AccountStore(Protocol):
    def locked(self, account_id: str) -> ContextManager[None]:
        """同一账户的读-判定-写需要在此锁内完成。"""
        ...

    def get(self, account_id: str) -> Optional[Account]:
        ...

    def save(self, account: Account) -> None:
        ...

    def set_api_key(self, account_id: str, provider: ProviderName, api_key: str, model: Optional[str]) -> Account:
        ...

    def clear_api_key(self, account_id: str) -> Account:
        ...

    def record_usage(self, account_id: str, usage_count: int, usage_reset_at: datetime) -> Account:
        ...
