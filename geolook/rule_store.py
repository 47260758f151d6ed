# geolook/rule_store.py
import asyncio
import logging
import os
import threading
from datetime import datetime
from typing import Dict, List, Optional

from .core.errors import ConcurrencyConflictError, InvalidInputError
from .core.models import AlertRule

logger = logging.getLogger(__name__)


class MemoryRuleStore:
    """In-process rule store; rule objects are shared with the engine."""

    def __init__(self, rules: Optional[List[AlertRule]] = None):
        self._rules: Dict[str, AlertRule] = {}
        self._lock = threading.Lock()
        for rule in rules or []:
            self.upsert(rule)

    def upsert(self, rule: AlertRule) -> AlertRule:
        with self._lock:
            self._rules[rule.id] = rule
        return rule

    def delete(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def set_active(self, rule_id: str, active: bool) -> Optional[AlertRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule:
                rule.is_active = active
            return rule

    def get(self, rule_id: str) -> Optional[AlertRule]:
        return self._rules.get(rule_id)

    def all_rules(self) -> List[AlertRule]:
        with self._lock:
            return list(self._rules.values())

    def active_rules(self) -> List[AlertRule]:
        return [rule for rule in self.all_rules() if rule.is_active]

    def save_last_triggered(self, rule: AlertRule, previous: Optional[datetime]) -> None:
        logger.debug("Rule %s lastTriggered=%s", rule.id, rule.last_triggered)

    async def refresh(self) -> List[str]:
        return []

    async def close(self):
        pass


class PostgresRuleStore:
    """Read view over the ``alert_rules`` table plus lastTriggered persistence.

    Tries to use `asyncpg` (async). If not installed, falls back to psycopg2 executed
    in a thread. Rules are cached so the engine always mutates one object per id;
    ``save_last_triggered`` is a compare-and-set so two backend processes cannot
    both fire the same rule.
    """

    TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS alert_rules (
        id TEXT PRIMARY KEY,
        sensor_type TEXT NOT NULL,
        condition TEXT NOT NULL,
        threshold DOUBLE PRECISION NOT NULL,
        cooldown_minutes INTEGER NOT NULL DEFAULT 5,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        last_triggered TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """
    COLUMNS = ("id", "sensor_type", "condition", "threshold", "cooldown_minutes", "is_active", "last_triggered")
    SELECT_SQL = (
        "SELECT id, sensor_type, condition, threshold, cooldown_minutes, is_active, last_triggered "
        "FROM alert_rules"
    )

    def __init__(self):
        self.pg_host = os.getenv("PG_HOST")
        self.pg_port = int(os.getenv("PG_PORT", "5432"))
        self.pg_db = os.getenv("PG_DB")
        self.pg_user = os.getenv("PG_USER")
        self.pg_password = os.getenv("PG_PASSWORD")

        self._conn = None
        self._asyncpg = None
        self._psycopg2 = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._db_lock = threading.Lock()
        self._rules: Dict[str, AlertRule] = {}
        self._rules_lock = threading.Lock()

    async def init(self):
        self._loop = asyncio.get_running_loop()
        # try asyncpg first
        try:
            import asyncpg

            self._asyncpg = asyncpg
            self._conn = await asyncpg.create_pool(
                host=self.pg_host,
                port=self.pg_port,
                user=self.pg_user,
                password=self.pg_password,
                database=self.pg_db,
                min_size=1,
                max_size=4,
            )
            await self._conn.execute(self.TABLE_SQL)
            logger.info("RuleStore: connected via asyncpg")
        except Exception as exc:  # pragma: no cover - optional dependency
            logger.debug("asyncpg not available or connect failed: %s", exc)
            self._asyncpg = None
            self._conn = None

        if self._conn is None:
            # fallback to psycopg2
            try:
                import psycopg2

                self._psycopg2 = psycopg2

                def _sync_connect():
                    conn = psycopg2.connect(
                        host=self.pg_host,
                        port=self.pg_port,
                        user=self.pg_user,
                        password=self.pg_password,
                        dbname=self.pg_db,
                    )
                    with conn.cursor() as cur:
                        cur.execute(self.TABLE_SQL)
                    conn.commit()
                    return conn

                self._conn = await asyncio.to_thread(_sync_connect)
                logger.info("RuleStore: connected via psycopg2 (sync fallback)")
            except Exception as exc:  # pragma: no cover - optional dependency
                logger.error("No PostgreSQL driver available or connect failed: %s", exc)
                self._psycopg2 = None
                self._conn = None
                return

        await self.refresh()

    @classmethod
    def _row_to_rule(cls, row) -> AlertRule:
        return AlertRule.from_dict(dict(zip(cls.COLUMNS, row)))

    def _rows_to_rules(self, rows) -> Dict[str, AlertRule]:
        rules = {}
        for row in rows:
            try:
                rule = self._row_to_rule(row)
            except InvalidInputError as exc:
                logger.warning("Skipping alert rule %s: %s", row[0] if row else None, exc)
                continue
            rules[rule.id] = rule
        return rules

    async def _fetch_rows(self):
        if self._asyncpg:
            records = await self._conn.fetch(self.SELECT_SQL)
            return [tuple(record.values()) for record in records]

        def _sync_fetch():
            with self._db_lock:
                with self._conn.cursor() as cur:
                    cur.execute(self.SELECT_SQL)
                    rows = cur.fetchall()
                self._conn.commit()
                return rows

        return await asyncio.to_thread(_sync_fetch)

    async def refresh(self) -> List[str]:
        """Reload externally owned rule fields; returns ids of rules that disappeared."""
        if not self._conn:
            return []
        try:
            rows = await self._fetch_rows()
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to load alert rules: %s", exc)
            return []

        fresh = self._rows_to_rules(rows)
        with self._rules_lock:
            removed = [rule_id for rule_id in self._rules if rule_id not in fresh]
            for rule_id in removed:
                del self._rules[rule_id]
            for rule_id, rule in fresh.items():
                cached = self._rules.get(rule_id)
                if cached is None:
                    self._rules[rule_id] = rule
                    continue
                # cached objects are shared with the engine; update them in place
                cached.sensor_type = rule.sensor_type
                cached.condition = rule.condition
                cached.threshold = rule.threshold
                cached.cooldown_minutes = rule.cooldown_minutes
                cached.is_active = rule.is_active
                cached.last_triggered = rule.last_triggered
        logger.info("Loaded %s alert rules (%s removed)", len(fresh), len(removed))
        return removed

    def all_rules(self) -> List[AlertRule]:
        with self._rules_lock:
            return list(self._rules.values())

    def active_rules(self) -> List[AlertRule]:
        return [rule for rule in self.all_rules() if rule.is_active]

    async def _cas_async(self, rule_id: str, new: datetime, previous: Optional[datetime]) -> int:
        status = await self._conn.execute(
            "UPDATE alert_rules SET last_triggered = $1 WHERE id = $2 AND last_triggered IS NOT DISTINCT FROM $3",
            new,
            rule_id,
            previous,
        )
        return int(status.split()[-1])

    def _cas_sync(self, rule_id: str, new: datetime, previous: Optional[datetime]) -> int:
        with self._db_lock:
            cur = self._conn.cursor()
            try:
                cur.execute(
                    "UPDATE alert_rules SET last_triggered = %s WHERE id = %s "
                    "AND last_triggered IS NOT DISTINCT FROM %s",
                    (new, rule_id, previous),
                )
                updated = cur.rowcount
                self._conn.commit()
                return updated
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    def _stored_last_triggered(self, rule_id: str) -> Optional[datetime]:
        if self._asyncpg:
            future = asyncio.run_coroutine_threadsafe(
                self._conn.fetchval("SELECT last_triggered FROM alert_rules WHERE id = $1", rule_id), self._loop
            )
            return future.result(timeout=10)

        with self._db_lock:
            cur = self._conn.cursor()
            try:
                cur.execute("SELECT last_triggered FROM alert_rules WHERE id = %s", (rule_id,))
                row = cur.fetchone()
                self._conn.commit()
                return row[0] if row else None
            finally:
                cur.close()

    def save_last_triggered(self, rule: AlertRule, previous: Optional[datetime]) -> None:
        """Persist a firing. Must be called from a worker thread, never the event loop.

        Raises ``ConcurrencyConflictError`` when the row no longer holds
        ``previous``. The error carries the stored value when it could be
        read back so the caller can resynchronise its cooldown.
        """
        if not self._conn:
            logger.warning("RuleStore not initialized; lastTriggered kept in memory only")
            return
        if self._asyncpg:
            future = asyncio.run_coroutine_threadsafe(
                self._cas_async(rule.id, rule.last_triggered, previous), self._loop
            )
            updated = future.result(timeout=10)
        else:
            updated = self._cas_sync(rule.id, rule.last_triggered, previous)
        if updated:
            return

        message = f"lastTriggered of rule {rule.id} was updated by another writer"
        try:
            current = self._stored_last_triggered(rule.id)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to reload lastTriggered for rule %s: %s", rule.id, exc)
            raise ConcurrencyConflictError(message) from exc
        raise ConcurrencyConflictError(message, current=current, reloaded=True)

    async def close(self):
        try:
            if self._asyncpg and self._conn:
                await self._conn.close()
            elif self._psycopg2 and self._conn:
                await asyncio.to_thread(self._conn.close)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("RuleStore close failed: %s", exc)
