"""套餐与用量校验。

每次 AI 请求前调用一次，返回 AccessDecision：
- 是否放行、拒绝原因；
- 放行时使用的凭据（BYOK 凭据或 None 表示默认凭据）；
- 需要写回的用量变化（usage_update），由调用方持久化。

判定顺序：
1. 无账户 -> unauthenticated
2. 账户自带密钥（BYOK） -> 放行，不计用量，可使用全部功能
3. pro 套餐 -> 放行
4. free 套餐访问 pro 功能 -> pro_required
5. free 套餐 optimize-resume：跨自然月重置计数；达到上限 -> limit_reached
6. 其余 -> 放行
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from career_relay.domain.accounts import Account
from career_relay.domain.models import ProviderCredential


PRO_ACTIONS = frozenset({"job-intel", "interview-questions", "mock-interview", "chat"})
FREE_LIMIT = 3  # 每月 optimize-resume 免费次数

DenyReason = Literal["unauthenticated", "pro_required", "limit_reached"]


@dataclass(frozen=True)
class UsageUpdate:
    usage_count: int
    usage_reset_at: datetime


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[DenyReason] = None
    account_id: Optional[str] = None
    credential: Optional[ProviderCredential] = None
    usage_update: Optional[UsageUpdate] = None

    @property
    def http_status(self) -> int:
        if self.allowed:
            return 200
        return 401 if self.reason == "unauthenticated" else 402


def is_new_month(now: datetime, reset_at: datetime) -> bool:
    return now.year != reset_at.year or now.month != reset_at.month


def check_access(action: str, account: Optional[Account], now: datetime) -> AccessDecision:
    if account is None:
        return AccessDecision(allowed=False, reason="unauthenticated")

    credential = account.credential()
    if credential is not None:
        return AccessDecision(allowed=True, account_id=account.id, credential=credential)

    if account.plan == "pro":
        return AccessDecision(allowed=True, account_id=account.id)

    if action in PRO_ACTIONS:
        return AccessDecision(allowed=False, reason="pro_required", account_id=account.id)

    if action == "optimize-resume":
        if is_new_month(now, account.usage_reset_at):
            return AccessDecision(
                allowed=True,
                account_id=account.id,
                usage_update=UsageUpdate(usage_count=1, usage_reset_at=now),
            )
        if account.usage_count >= FREE_LIMIT:
            return AccessDecision(allowed=False, reason="limit_reached", account_id=account.id)
        return AccessDecision(
            allowed=True,
            account_id=account.id,
            usage_update=UsageUpdate(usage_count=account.usage_count + 1, usage_reset_at=account.usage_reset_at),
        )

    return AccessDecision(allowed=True, account_id=account.id)
