from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class UsageAccount:
    user_id: str
    research_count: int = 0
    research_limit: int | None = None
    research_last_reset: datetime = EPOCH

    def __post_init__(self) -> None:
        if self.research_count < 0:
            raise ValueError("research_count must be non-negative")
        if self.research_limit is not None and self.research_limit <= 0:
            raise ValueError("research_limit must be positive")
        if self.research_last_reset.tzinfo is None:
            raise ValueError("research_last_reset must be timezone-aware")

    def effective_limit(self, default_limit: int) -> int:
        return self.research_limit if self.research_limit is not None else default_limit


@dataclass(frozen=True)
class QuotaPeriod:
    """Half-open ``[start, end)`` span of one local calendar month."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass(frozen=True)
class QuotaReservation:
    user_id: str
    used: int
    limit: int
    remaining: int


def month_period(now: datetime, tz: tzinfo | None = None) -> QuotaPeriod:
    """Calendar month containing ``now``, on the wall clock of ``tz``.

    Without ``tz`` the server's local zone is used and naive datetimes are
    read as local time. Each bound is a local midnight carrying the UTC
    offset in force on that date, so DST changes inside the month do not
    move the boundary.
    """
    local = now.astimezone(tz) if tz is not None else now.astimezone()
    if local.month == 12:
        next_year, next_month = local.year + 1, 1
    else:
        next_year, next_month = local.year, local.month + 1
    if tz is not None:
        start = datetime(local.year, local.month, 1, tzinfo=tz)
        end = datetime(next_year, next_month, 1, tzinfo=tz)
    else:
        start = datetime(local.year, local.month, 1).astimezone()
        end = datetime(next_year, next_month, 1).astimezone()
    return QuotaPeriod(start=start, end=end)
