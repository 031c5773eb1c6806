"""Access checks for private messages.

Privileged accounts (bypass or administer) are never rate limited; the
evaluator is not consulted for them at all.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from src.config.policy import ConfigProvider
from src.models.account import PERM_CREATE, PERM_DELETE_OWN, PERM_VIEW_OWN, UserAccount
from src.models.message import PrivateMessage
from src.security.rate_limit import MessageCounter, RateDecision, RateLimitExceeded, evaluate

LOGGER = logging.getLogger(__name__)


class AccessDenied(RuntimeError):
    """Raised when an account lacks the permission for an operation."""


def rate_limit_message(decision: RateDecision) -> str:
    if decision.selection is None:
        return "You have reached the private message limit. Please try again later."
    quota = decision.selection.quota
    unit = "minute" if quota.interval_minutes == 1 else "minutes"
    return (
        f"You can send at most {quota.limit} private messages every "
        f"{quota.interval_minutes} {unit}. Please try again later."
    )


class AccessGate:
    def __init__(self, config: ConfigProvider, counter: MessageCounter) -> None:
        self._config = config
        self._counter = counter

    def check_create(self, account: UserAccount, now: Optional[datetime] = None) -> RateDecision:
        if not (account.is_privileged or account.has_permission(PERM_CREATE)):
            LOGGER.info("create denied user_id=%s", account.user_id)
            raise AccessDenied("permission denied: create private messages")
        if account.is_privileged:
            return RateDecision(allowed=True, reason="privileged")

        policy = self._config.current()
        limits = policy.rate_limit
        if not limits.enabled:
            return RateDecision(allowed=True, reason="rate limit disabled")

        return evaluate(
            user_id=account.user_id,
            roles=account.roles,
            config=limits.roles,
            default=limits.default,
            counter=self._counter,
            now=now,
            kind=policy.messages.kind,
        )

    def validate_submission(self, account: UserAccount, now: Optional[datetime] = None) -> RateDecision:
        decision = self.check_create(account, now=now)
        if not decision.allowed:
            raise RateLimitExceeded(rate_limit_message(decision))
        return decision

    def can_view(self, account: UserAccount, message: PrivateMessage) -> bool:
        if account.is_privileged:
            return True
        return account.has_permission(PERM_VIEW_OWN) and message.is_participant(account.user_id)

    def can_delete(self, account: UserAccount, message: PrivateMessage) -> bool:
        if account.is_privileged:
            return True
        return account.has_permission(PERM_DELETE_OWN) and message.author_id == account.user_id
