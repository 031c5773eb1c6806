"""Per-role private message rate limiting.

The evaluator is pure: it never reads configuration or the message store on
its own. Callers hand it the user's roles, the raw quota table and a counter.

Counting and creating are two separate steps, so concurrent submissions by the
same user can both pass the check and overshoot the limit slightly. That
read-then-act window is accepted; no lock or reservation is taken.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from fractions import Fraction
from typing import Any, Optional, Protocol

from src.config.policy import DEFAULT_MESSAGE_KIND, DEFAULT_QUOTA_KEY, RawQuota

LOGGER = logging.getLogger(__name__)

LIMIT_RANGE = (1, 1000)
INTERVAL_RANGE = (1, 1440)


class RateLimitExceeded(RuntimeError):
    """Raised when a user has used up the quota for the current window."""


@dataclass(frozen=True)
class RoleQuota:
    role_id: str
    limit: int
    interval_minutes: int

    @property
    def cost(self) -> Fraction:
        """Minutes per allowed message; lower is stricter."""
        return Fraction(self.interval_minutes, self.limit)


@dataclass(frozen=True)
class QuotaSelection:
    key: str
    quota: RoleQuota

    @property
    def is_default(self) -> bool:
        return self.key == DEFAULT_QUOTA_KEY


@dataclass(frozen=True)
class UserRateState:
    user_id: int
    roles: frozenset[str]
    message_count_since_cutoff: int


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    reason: str = ""
    selection: Optional[QuotaSelection] = None
    state: Optional[UserRateState] = None
    cutoff: Optional[datetime] = None

    @property
    def count(self) -> int:
        return self.state.message_count_since_cutoff if self.state else 0


class MessageCounter(Protocol):
    def count_created_since(self, user_id: int, kind: str, since: datetime) -> int:
        """Count messages of `kind` by `user_id` created strictly after `since`."""


def _coerce_int(value: Any, bounds: tuple[int, int]) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and value.strip().isdecimal():
        try:
            number = int(value.strip())
        except ValueError:
            return None
    else:
        return None
    low, high = bounds
    if number < low or number > high:
        return None
    return number


def to_role_quota(key: str, raw: Optional[RawQuota]) -> Optional[RoleQuota]:
    """Validate one raw pair; None means the entry is left out of selection."""
    if raw is None:
        return None
    limit = _coerce_int(raw.limit, LIMIT_RANGE)
    interval = _coerce_int(raw.interval_minutes, INTERVAL_RANGE)
    if limit is None or interval is None:
        if raw.limit is not None or raw.interval_minutes is not None:
            LOGGER.debug(
                "quota excluded key=%s limit=%r interval_minutes=%r",
                key,
                raw.limit,
                raw.interval_minutes,
            )
        return None
    return RoleQuota(role_id=key, limit=limit, interval_minutes=interval)


def select_strictest_quota(
    roles: Iterable[str],
    config: Mapping[str, RawQuota],
    default: Optional[RawQuota],
) -> Optional[QuotaSelection]:
    """Pick the quota with the lowest minutes-per-message ratio.

    The default is considered first and roles follow in ascending id order.
    A candidate only replaces the current pick when strictly cheaper, so ties
    resolve to the default, then to the smallest role id.
    """
    candidates: list[QuotaSelection] = []

    default_quota = to_role_quota(DEFAULT_QUOTA_KEY, default)
    if default_quota is not None:
        candidates.append(QuotaSelection(key=DEFAULT_QUOTA_KEY, quota=default_quota))

    for role_id in sorted(set(roles)):
        quota = to_role_quota(role_id, config.get(role_id))
        if quota is not None:
            candidates.append(QuotaSelection(key=role_id, quota=quota))

    best: Optional[QuotaSelection] = None
    for candidate in candidates:
        if best is None or candidate.quota.cost < best.quota.cost:
            best = candidate
    return best


def is_within_limit(count: int, quota: RoleQuota) -> bool:
    return count < quota.limit


def compute_cutoff(now: datetime, interval_minutes: int) -> datetime:
    return now - timedelta(minutes=interval_minutes)


def evaluate(
    user_id: int,
    roles: Iterable[str],
    config: Mapping[str, RawQuota],
    default: Optional[RawQuota],
    counter: MessageCounter,
    now: Optional[datetime] = None,
    kind: str = DEFAULT_MESSAGE_KIND,
) -> RateDecision:
    held = frozenset(roles)
    selection = select_strictest_quota(held, config, default)
    if selection is None:
        LOGGER.debug("no quota configured user_id=%s", user_id)
        return RateDecision(allowed=True)

    current = now or datetime.now(timezone.utc)
    cutoff = compute_cutoff(current, selection.quota.interval_minutes)
    count = counter.count_created_since(user_id=user_id, kind=kind, since=cutoff)
    state = UserRateState(user_id=user_id, roles=held, message_count_since_cutoff=count)

    if is_within_limit(count, selection.quota):
        LOGGER.debug(
            "rate ok user_id=%s key=%s count=%s limit=%s",
            user_id,
            selection.key,
            count,
            selection.quota.limit,
        )
        return RateDecision(allowed=True, selection=selection, state=state, cutoff=cutoff)

    LOGGER.info(
        "rate limit exceeded user_id=%s key=%s count=%s limit=%s interval_minutes=%s",
        user_id,
        selection.key,
        count,
        selection.quota.limit,
        selection.quota.interval_minutes,
    )
    return RateDecision(
        allowed=False,
        reason="rate limit exceeded",
        selection=selection,
        state=state,
        cutoff=cutoff,
    )
