from .plan_check import FREE_LIMIT, PRO_ACTIONS, AccessDecision, UsageUpdate, check_access, is_new_month

__all__ = ["FREE_LIMIT", "PRO_ACTIONS", "AccessDecision", "UsageUpdate", "check_access", "is_new_month"]
