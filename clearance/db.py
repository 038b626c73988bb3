"""
Async Postgres: packages (current state per package), importers (per-org config),
activity_logs (append-only audit) and sms_notifications (delivery record).
Package updates are a single UPDATE ... RETURNING statement, so each write is atomic.
"""
import json
from datetime import datetime
from enum import Enum
from typing import Any

import asyncpg

from clearance.config import settings
from clearance.errors import PackageNotFoundError, PersistenceError
from clearance.models import Importer, Package, PackageItem, SmsNotification

_pool: asyncpg.Pool | None = None

# Columns the engine may write through update_package
UPDATABLE_COLUMNS = frozenset({
    "status",
    "payment_status",
    "customs_cleared_date",
    "delivered_date",
    "customs_duty",
    "vat",
    "total_fees",
    "declared_value",
    "items",
    "notes",
})


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS importers (
                id VARCHAR(255) PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                sms_enabled BOOLEAN NOT NULL DEFAULT TRUE,
                google_sheet_id VARCHAR(255),
                google_access_token TEXT
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS packages (
                id VARCHAR(255) PRIMARY KEY,
                importer_id VARCHAR(255) NOT NULL REFERENCES importers(id),
                tracking_number VARCHAR(255) NOT NULL,
                customer_name VARCHAR(255) NOT NULL,
                customer_phone VARCHAR(50) NOT NULL,
                customer_email VARCHAR(255),
                origin VARCHAR(255) NOT NULL DEFAULT '',
                carrier VARCHAR(100),
                items JSONB NOT NULL DEFAULT '[]'::jsonb,
                declared_value NUMERIC(12, 2) NOT NULL DEFAULT 0,
                purpose VARCHAR(20) NOT NULL DEFAULT 'personal',
                customs_duty NUMERIC(12, 2) NOT NULL DEFAULT 0,
                vat NUMERIC(12, 2) NOT NULL DEFAULT 0,
                total_fees NUMERIC(12, 2) NOT NULL DEFAULT 0,
                status VARCHAR(50) NOT NULL DEFAULT 'received',
                payment_status VARCHAR(20) NOT NULL DEFAULT 'pending',
                received_date TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                customs_cleared_date TIMESTAMPTZ,
                delivered_date TIMESTAMPTZ,
                notes TEXT,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_packages_importer_id
            ON packages(importer_id);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS activity_logs (
                id BIGSERIAL PRIMARY KEY,
                package_id VARCHAR(255) NOT NULL,
                action TEXT NOT NULL,
                timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_activity_logs_package_id
            ON activity_logs(package_id);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS sms_notifications (
                id BIGSERIAL PRIMARY KEY,
                package_id VARCHAR(255) NOT NULL,
                customer_phone VARCHAR(50) NOT NULL,
                message TEXT NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'pending',
                error TEXT,
                sent_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)


def _db_value(column: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if column == "items":
        return json.dumps([PackageItem.model_validate(i).model_dump(mode="json") for i in value])
    return value


def _row_to_package(row: asyncpg.Record) -> Package:
    data = dict(row)
    if isinstance(data.get("items"), str):
        data["items"] = json.loads(data["items"])
    return Package.model_validate(data)


class PackageStore:
    """Persistence collaborator: get/update packages, read importer config."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_package(self, package_id: str) -> Package | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM packages WHERE id = $1;", package_id)
        return _row_to_package(row) if row is not None else None

    async def update_package(self, package_id: str, fields: dict[str, Any]) -> Package:
        """
        Apply fields in one UPDATE and return the stored row.
        Raises PackageNotFoundError if the id does not exist, PersistenceError on driver failure.
        """
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        columns = sorted(fields)
        assignments = ", ".join(
            f"{col} = ${i}::jsonb" if col == "items" else f"{col} = ${i}"
            for i, col in enumerate(columns, start=1)
        )
        values = [_db_value(col, fields[col]) for col in columns]
        query = (
            f"UPDATE packages SET {assignments}, updated_at = NOW() "
            f"WHERE id = ${len(columns) + 1} RETURNING *;"
        )
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *values, package_id)
        except (asyncpg.PostgresError, OSError) as e:
            raise PersistenceError(f"update of package {package_id} failed: {e}") from e
        if row is None:
            raise PackageNotFoundError(package_id)
        return _row_to_package(row)

    async def get_importer(self, importer_id: str) -> Importer | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM importers WHERE id = $1;", importer_id)
        return Importer.model_validate(dict(row)) if row is not None else None

    async def add_sms_notification(self, package_id: str, phone: str, message: str) -> SmsNotification:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO sms_notifications (package_id, customer_phone, message, status)
                VALUES ($1, $2, $3, 'pending') RETURNING *;
                """,
                package_id,
                phone,
                message,
            )
        return SmsNotification.model_validate(dict(row))

    async def mark_sms_notification(
        self,
        notification_id: int,
        status: str,
        error: str | None = None,
        sent_at: datetime | None = None,
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE sms_notifications SET status = $1, error = $2, sent_at = $3 WHERE id = $4;",
                status,
                error,
                sent_at,
                notification_id,
            )
