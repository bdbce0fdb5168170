"""Monthly research quota with lazy reset.

The counter is never reset by a scheduled job. The first call in a new
calendar month (server local time, or ``tz`` when given) zeroes it before the
limit check. The check itself does not consume quota; ``commit`` consumes
exactly one unit after the research call succeeded, through the store's
atomic conditional update, so two concurrent requests can never push an
account over its limit.
"""

import logging
from collections.abc import Callable
from datetime import datetime, tzinfo

from gateway.core.errors import ProfileNotFoundError, QuotaExceededError
from gateway.quota.stores import UsageStore
from gateway.quota.types import QuotaReservation, UsageAccount, month_period

logger = logging.getLogger("pgw.quota")

DEFAULT_RESEARCH_LIMIT = 300


class QuotaLedger:
    def __init__(
        self,
        store: UsageStore,
        default_limit: int = DEFAULT_RESEARCH_LIMIT,
        clock: Callable[[], datetime] | None = None,
        tz: tzinfo | None = None,
        autoprovision: bool = False,
    ) -> None:
        if default_limit <= 0:
            raise ValueError("default_limit must be positive")
        self._store = store
        self._default_limit = default_limit
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(tz).astimezone(tz))
        self._autoprovision = autoprovision

    @property
    def store(self) -> UsageStore:
        return self._store

    @property
    def default_limit(self) -> int:
        return self._default_limit

    def _load(self, user_id: str, now: datetime) -> UsageAccount:
        account = self._store.get(user_id)
        if account is not None:
            return account
        if not self._autoprovision:
            raise ProfileNotFoundError(user_id)
        # The default limit stays unset so later changes to it apply.
        self._store.create_if_absent(UsageAccount(user_id=user_id, research_last_reset=now))
        logger.info("research_account_provisioned", extra={"user_id": user_id})
        account = self._store.get(user_id)
        if account is None:
            raise ProfileNotFoundError(user_id)
        return account

    def check_and_reserve(self, user_id: str) -> QuotaReservation:
        """Raise ``QuotaExceededError`` when the account has no research left this month."""
        now = self._clock()
        period = month_period(now, self._tz)
        account = self._load(user_id, now)

        used = account.research_count
        if not period.contains(account.research_last_reset):
            self._store.reset_if_stale(user_id, period, now)
            used = 0
            logger.info("research_quota_reset", extra={"user_id": user_id})

        limit = account.effective_limit(self._default_limit)
        if used >= limit:
            raise QuotaExceededError(limit)
        return QuotaReservation(user_id=user_id, used=used, limit=limit, remaining=limit - used)

    def commit(self, user_id: str) -> UsageAccount:
        """Consume one research unit."""
        now = self._clock()
        updated = self._store.increment_if_below_limit(
            user_id, month_period(now, self._tz), now, self._default_limit
        )
        if updated is not None:
            return updated

        account = self._store.get(user_id)
        if account is None:
            raise ProfileNotFoundError(user_id)
        # Another request consumed the last unit between check and commit.
        raise QuotaExceededError(account.effective_limit(self._default_limit))

    def remaining(self, account: UsageAccount) -> int:
        return max(0, account.effective_limit(self._default_limit) - account.research_count)
