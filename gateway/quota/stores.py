"""Usage account storage backends.

Every backend implements the mutations the ledger needs as single atomic
conditional updates, so concurrent research calls for the same
account cannot both pass the limit check:

* ``reset_if_stale`` zeroes the counter only when the last reset falls
  outside the current period.
* ``increment_if_below_limit`` adds one only when the account is below its
  limit, or restarts the counter at one when the period has rolled over.
* ``create_if_absent`` provisions an account only when none exists yet.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import closing
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import redis

from gateway.core.errors import UsageBackendError
from gateway.quota.types import EPOCH, QuotaPeriod, UsageAccount


class UsageStore(Protocol):
    backend: str

    def get(self, user_id: str) -> UsageAccount | None:
        """Return the account, or ``None`` when the profile does not exist."""

    def upsert(self, account: UsageAccount) -> None:
        """Create or overwrite an account row."""

    def create_if_absent(self, account: UsageAccount) -> bool:
        """Insert ``account`` unless the user already has a row."""

    def reset_if_stale(self, user_id: str, period: QuotaPeriod, now: datetime) -> bool:
        """Atomically reset the counter when the last reset is outside ``period``."""

    def increment_if_below_limit(
        self,
        user_id: str,
        period: QuotaPeriod,
        now: datetime,
        default_limit: int,
    ) -> UsageAccount | None:
        """Atomically consume one unit; ``None`` when nothing was updated."""


def _to_db(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


def _from_db(raw: object) -> datetime:
    if not isinstance(raw, str) or not raw.strip():
        return EPOCH
    parsed = datetime.fromisoformat(raw.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class InMemoryUsageStore:
    """Process-local store; all state is guarded by a ``threading.Lock``."""

    backend = "memory"

    def __init__(self, accounts: list[UsageAccount] | None = None) -> None:
        self._accounts: dict[str, UsageAccount] = {}
        self._lock = threading.Lock()
        for account in accounts or []:
            self._accounts[account.user_id] = account

    def get(self, user_id: str) -> UsageAccount | None:
        with self._lock:
            return self._accounts.get(user_id)

    def upsert(self, account: UsageAccount) -> None:
        with self._lock:
            self._accounts[account.user_id] = account

    def create_if_absent(self, account: UsageAccount) -> bool:
        with self._lock:
            if account.user_id in self._accounts:
                return False
            self._accounts[account.user_id] = account
            return True

    def reset_if_stale(self, user_id: str, period: QuotaPeriod, now: datetime) -> bool:
        with self._lock:
            account = self._accounts.get(user_id)
            if account is None or period.contains(account.research_last_reset):
                return False
            self._accounts[user_id] = replace(
                account, research_count=0, research_last_reset=now
            )
            return True

    def increment_if_below_limit(
        self,
        user_id: str,
        period: QuotaPeriod,
        now: datetime,
        default_limit: int,
    ) -> UsageAccount | None:
        with self._lock:
            account = self._accounts.get(user_id)
            if account is None:
                return None
            if not period.contains(account.research_last_reset):
                updated = replace(account, research_count=1, research_last_reset=now)
            elif account.research_count < account.effective_limit(default_limit):
                updated = replace(account, research_count=account.research_count + 1)
            else:
                return None
            self._accounts[user_id] = updated
            return updated


@dataclass
class SQLiteUsageStore:
    path: Path
    timeout_s: float = 5.0
    backend: str = "sqlite"

    def __post_init__(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.path), timeout=self.timeout_s)
        connection.row_factory = sqlite3.Row
        return connection

    def _ensure_schema(self) -> None:
        with closing(self._connect()) as connection, connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_accounts (
                    user_id TEXT PRIMARY KEY,
                    research_count INTEGER NOT NULL DEFAULT 0
                        CHECK (research_count >= 0),
                    research_limit INTEGER CHECK (research_limit IS NULL OR research_limit > 0),
                    research_last_reset TEXT NOT NULL
                )
                """
            )
            connection.commit()

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> UsageAccount:
        return UsageAccount(
            user_id=row["user_id"],
            research_count=int(row["research_count"]),
            research_limit=row["research_limit"],
            research_last_reset=_from_db(row["research_last_reset"]),
        )

    def _select(self, connection: sqlite3.Connection, user_id: str) -> UsageAccount | None:
        row = connection.execute(
            "SELECT user_id, research_count, research_limit, research_last_reset "
            "FROM usage_accounts WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return self._row_to_account(row) if row is not None else None

    def get(self, user_id: str) -> UsageAccount | None:
        try:
            with closing(self._connect()) as connection, connection:
                return self._select(connection, user_id)
        except sqlite3.Error as exc:
            raise UsageBackendError(f"SQLite read failed: {exc}") from exc

    def upsert(self, account: UsageAccount) -> None:
        try:
            with closing(self._connect()) as connection, connection:
                connection.execute(
                    """
                    INSERT INTO usage_accounts (
                        user_id, research_count, research_limit, research_last_reset
                    ) VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        research_count = excluded.research_count,
                        research_limit = excluded.research_limit,
                        research_last_reset = excluded.research_last_reset
                    """,
                    (
                        account.user_id,
                        account.research_count,
                        account.research_limit,
                        _to_db(account.research_last_reset),
                    ),
                )
                connection.commit()
        except sqlite3.Error as exc:
            raise UsageBackendError(f"SQLite write failed: {exc}") from exc

    def create_if_absent(self, account: UsageAccount) -> bool:
        try:
            with closing(self._connect()) as connection, connection:
                cursor = connection.execute(
                    """
                    INSERT INTO usage_accounts (
                        user_id, research_count, research_limit, research_last_reset
                    ) VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id) DO NOTHING
                    """,
                    (
                        account.user_id,
                        account.research_count,
                        account.research_limit,
                        _to_db(account.research_last_reset),
                    ),
                )
                connection.commit()
                return int(cursor.rowcount or 0) > 0
        except sqlite3.Error as exc:
            raise UsageBackendError(f"SQLite write failed: {exc}") from exc

    def reset_if_stale(self, user_id: str, period: QuotaPeriod, now: datetime) -> bool:
        try:
            with closing(self._connect()) as connection, connection:
                cursor = connection.execute(
                    """
                    UPDATE usage_accounts
                    SET research_count = 0, research_last_reset = :now
                    WHERE user_id = :user_id
                      AND NOT (research_last_reset >= :start AND research_last_reset < :end)
                    """,
                    {
                        "user_id": user_id,
                        "now": _to_db(now),
                        "start": _to_db(period.start),
                        "end": _to_db(period.end),
                    },
                )
                connection.commit()
                return int(cursor.rowcount or 0) > 0
        except sqlite3.Error as exc:
            raise UsageBackendError(f"SQLite write failed: {exc}") from exc

    def increment_if_below_limit(
        self,
        user_id: str,
        period: QuotaPeriod,
        now: datetime,
        default_limit: int,
    ) -> UsageAccount | None:
        try:
            with closing(self._connect()) as connection, connection:
                cursor = connection.execute(
                    """
                    UPDATE usage_accounts
                    SET research_count = CASE
                            WHEN research_last_reset >= :start AND research_last_reset < :end
                            THEN research_count + 1
                            ELSE 1
                        END,
                        research_last_reset = CASE
                            WHEN research_last_reset >= :start AND research_last_reset < :end
                            THEN research_last_reset
                            ELSE :now
                        END
                    WHERE user_id = :user_id
                      AND (
                        NOT (research_last_reset >= :start AND research_last_reset < :end)
                        OR research_count < COALESCE(research_limit, :default_limit)
                      )
                    """,
                    {
                        "user_id": user_id,
                        "now": _to_db(now),
                        "start": _to_db(period.start),
                        "end": _to_db(period.end),
                        "default_limit": default_limit,
                    },
                )
                if not cursor.rowcount:
                    connection.commit()
                    return None
                # Read back inside the same write transaction.
                account = self._select(connection, user_id)
                connection.commit()
                return account
        except sqlite3.Error as exc:
            raise UsageBackendError(f"SQLite write failed: {exc}") from exc


_RESET_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local last = redis.call('HGET', KEYS[1], 'research_last_reset') or ''
if last >= ARGV[1] and last < ARGV[2] then
    return 0
end
redis.call('HSET', KEYS[1], 'research_count', 0, 'research_last_reset', ARGV[3])
return 1
"""

_CREATE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call(
    'HSET', KEYS[1],
    'research_count', ARGV[1], 'research_limit', ARGV[2], 'research_last_reset', ARGV[3]
)
return 1
"""

_INCREMENT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local last = redis.call('HGET', KEYS[1], 'research_last_reset') or ''
local count = tonumber(redis.call('HGET', KEYS[1], 'research_count') or '0') or 0
local limit = tonumber(redis.call('HGET', KEYS[1], 'research_limit') or '') or tonumber(ARGV[4])
if last >= ARGV[1] and last < ARGV[2] then
    if count >= limit then
        return 0
    end
    return redis.call('HINCRBY', KEYS[1], 'research_count', 1)
end
redis.call('HSET', KEYS[1], 'research_count', 1, 'research_last_reset', ARGV[3])
return 1
"""


class RedisUsageStore:
    """Redis-backed store for multi-replica deployments.

    One hash per account; every mutation runs as a Lua script so the check and
    the write execute atomically on the server.
    """

    backend = "redis"

    def __init__(self, redis_url: str, key_prefix: str = "pgw:usage") -> None:
        self._key_prefix = key_prefix
        try:
            self._client: Any = redis.Redis.from_url(redis_url, decode_responses=True)
            self._client.ping()
            self._reset_script = self._client.register_script(_RESET_SCRIPT)
            self._increment_script = self._client.register_script(_INCREMENT_SCRIPT)
            self._create_script = self._client.register_script(_CREATE_SCRIPT)
        except redis.RedisError as exc:
            raise UsageBackendError(f"Failed to initialize Redis usage backend: {exc}") from exc

    def _key(self, user_id: str) -> str:
        return f"{self._key_prefix}:{user_id}"

    def get(self, user_id: str) -> UsageAccount | None:
        try:
            fields: dict[str, str] = self._client.hgetall(self._key(user_id))
        except redis.RedisError as exc:
            raise UsageBackendError(f"Redis read failed: {exc}") from exc
        if not fields:
            return None
        raw_limit = fields.get("research_limit", "")
        return UsageAccount(
            user_id=user_id,
            research_count=int(fields.get("research_count", "0") or 0),
            research_limit=int(raw_limit) if raw_limit else None,
            research_last_reset=_from_db(fields.get("research_last_reset")),
        )

    def upsert(self, account: UsageAccount) -> None:
        mapping = {
            "research_count": account.research_count,
            "research_limit": "" if account.research_limit is None else account.research_limit,
            "research_last_reset": _to_db(account.research_last_reset),
        }
        try:
            self._client.hset(self._key(account.user_id), mapping=mapping)
        except redis.RedisError as exc:
            raise UsageBackendError(f"Redis write failed: {exc}") from exc

    def create_if_absent(self, account: UsageAccount) -> bool:
        try:
            result = self._create_script(
                keys=[self._key(account.user_id)],
                args=[
                    account.research_count,
                    "" if account.research_limit is None else account.research_limit,
                    _to_db(account.research_last_reset),
                ],
            )
        except redis.RedisError as exc:
            raise UsageBackendError(f"Redis write failed: {exc}") from exc
        return int(result) == 1

    def reset_if_stale(self, user_id: str, period: QuotaPeriod, now: datetime) -> bool:
        try:
            result = self._reset_script(
                keys=[self._key(user_id)],
                args=[_to_db(period.start), _to_db(period.end), _to_db(now)],
            )
        except redis.RedisError as exc:
            raise UsageBackendError(f"Redis write failed: {exc}") from exc
        return int(result) == 1

    def increment_if_below_limit(
        self,
        user_id: str,
        period: QuotaPeriod,
        now: datetime,
        default_limit: int,
    ) -> UsageAccount | None:
        try:
            result = self._increment_script(
                keys=[self._key(user_id)],
                args=[_to_db(period.start), _to_db(period.end), _to_db(now), default_limit],
            )
        except redis.RedisError as exc:
            raise UsageBackendError(f"Redis write failed: {exc}") from exc
        if int(result) <= 0:
            return None
        return self.get(user_id)


def create_usage_store(
    *,
    backend: str,
    sqlite_path: Path | None = None,
    redis_url: str | None = None,
    redis_prefix: str = "pgw:usage",
) -> UsageStore:
    normalized_backend = backend.strip().lower()
    if normalized_backend == "memory":
        return InMemoryUsageStore()
    if normalized_backend == "sqlite":
        if sqlite_path is None:
            raise UsageBackendError("PGW_USAGE_SQLITE_PATH is required when backend=sqlite")
        return SQLiteUsageStore(path=sqlite_path)
    if normalized_backend == "redis":
        if not redis_url:
            raise UsageBackendError("PGW_USAGE_REDIS_URL is required when backend=redis")
        return RedisUsageStore(redis_url=redis_url, key_prefix=redis_prefix)
    raise UsageBackendError(f"Unsupported usage backend: {backend}")
