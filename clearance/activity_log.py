"""
Append-only activity log. Entries are inserted once and never updated or deleted.
"""
import asyncpg

from clearance.models import ActivityLogEntry


class ActivityLogWriter:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def append(self, package_id: str, action: str) -> ActivityLogEntry:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO activity_logs (package_id, action, timestamp)
                VALUES ($1, $2, NOW())
                RETURNING id, package_id, action, timestamp;
                """,
                package_id,
                action,
            )
        return ActivityLogEntry.model_validate(dict(row))

    async def list_for_package(self, package_id: str) -> list[ActivityLogEntry]:
        """Entries for package_id, oldest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, package_id, action, timestamp FROM activity_logs
                WHERE package_id = $1
                ORDER BY timestamp ASC, id ASC;
                """,
                package_id,
            )
        return [ActivityLogEntry.model_validate(dict(r)) for r in rows]
