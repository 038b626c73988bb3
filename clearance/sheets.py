"""
Google Sheets sync: upsert one row per package into the importer's tracking sheet.
The row is keyed on package id (column A); syncing the same snapshot twice
writes identical values to the same row.
"""
import logging
from datetime import datetime
from decimal import Decimal

import httpx

from clearance.config import settings
from clearance.db import PackageStore
from clearance.metrics import sheet_syncs_total
from clearance.models import DeliveryResult, Package

logger = logging.getLogger(__name__)

SHEET_COLUMNS: list[str] = [
    "Package ID",
    "Tracking Number",
    "Customer Name",
    "Customer Phone",
    "Customer Email",
    "Status",
    "Total Value (USD)",
    "Total Weight (kg)",
    "Origin",
    "Carrier",
    "Items Count",
    "Items",
    "Received Date",
    "Customs Cleared Date",
    "Delivered Date",
    "Import Duty (USD)",
    "VAT (USD)",
    "Total Fees (USD)",
    "Payment Status",
    "Notes",
    "Created At",
    "Updated At",
]
LAST_COLUMN = chr(ord("A") + len(SHEET_COLUMNS) - 1)


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def _num(value: Decimal | float | None) -> float:
    return float(value) if value is not None else 0.0


def package_to_row(package: Package) -> list[str | float | int]:
    return [
        package.id,
        package.tracking_number,
        package.customer_name,
        package.customer_phone,
        package.customer_email or "",
        package.status.value,
        _num(package.declared_value),
        sum(i.weight or 0 for i in package.items),
        package.origin,
        package.carrier or "",
        len(package.items),
        ", ".join(f"{i.name} (x{i.quantity})" for i in package.items),
        _iso(package.received_date),
        _iso(package.customs_cleared_date),
        _iso(package.delivered_date),
        _num(package.customs_duty),
        _num(package.vat),
        _num(package.total_fees),
        package.payment_status.value,
        package.notes or "",
        _iso(package.created_at),
        _iso(package.updated_at),
    ]


class GoogleSheetsSync:
    """sync(package) -> DeliveryResult. Skips importers without a sheet or token."""

    def __init__(
        self,
        store: PackageStore,
        api_base: str | None = None,
        tab_name: str | None = None,
        timeout: float | None = None,
    ):
        self.store = store
        self.api_base = (api_base or settings.sheets_api_base).rstrip("/")
        self.tab_name = tab_name or settings.sheets_tab_name
        self.timeout = timeout or settings.sheets_timeout_sec

    def _values_url(self, sheet_id: str, cell_range: str) -> str:
        return f"{self.api_base}/{sheet_id}/values/{cell_range}"

    async def _find_row(self, client: httpx.AsyncClient, sheet_id: str, package_id: str) -> tuple[int | None, bool]:
        """Returns (1-based row number of package_id or None, sheet_is_empty)."""
        resp = await client.get(self._values_url(sheet_id, f"{self.tab_name}!A:A"))
        resp.raise_for_status()
        values = resp.json().get("values") or []
        for index, row in enumerate(values[1:], start=2):  # row 1 is the header
            if row and row[0] == package_id:
                return index, False
        return None, not values

    async def sync(self, package: Package) -> DeliveryResult:
        importer = await self.store.get_importer(package.importer_id)
        if importer is None:
            sheet_syncs_total.labels(outcome="failed").inc()
            return DeliveryResult.failure(f"importer {package.importer_id} not found")
        if not importer.google_sheet_id:
            sheet_syncs_total.labels(outcome="skipped").inc()
            return DeliveryResult.skip("no tracking sheet configured")
        if not importer.google_access_token:
            sheet_syncs_total.labels(outcome="skipped").inc()
            return DeliveryResult.skip("google account not connected")

        sheet_id = importer.google_sheet_id
        row = package_to_row(package)
        headers = {"Authorization": f"Bearer {importer.google_access_token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
                row_number, empty = await self._find_row(client, sheet_id, package.id)
                if row_number is not None:
                    resp = await client.put(
                        self._values_url(sheet_id, f"{self.tab_name}!A{row_number}:{LAST_COLUMN}{row_number}"),
                        params={"valueInputOption": "RAW"},
                        json={"values": [row]},
                    )
                else:
                    rows = [SHEET_COLUMNS, row] if empty else [row]
                    resp = await client.post(
                        self._values_url(sheet_id, f"{self.tab_name}!A:{LAST_COLUMN}:append"),
                        params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                        json={"values": rows},
                    )
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            sheet_syncs_total.labels(outcome="failed").inc()
            logger.warning("Sheet sync for package_id=%s rejected: HTTP %d", package.id, e.response.status_code)
            return DeliveryResult.failure(f"sheets api returned {e.response.status_code}")
        except httpx.HTTPError as e:
            sheet_syncs_total.labels(outcome="failed").inc()
            logger.warning("Sheet sync for package_id=%s failed: %s", package.id, e)
            return DeliveryResult.failure(str(e) or type(e).__name__)
        except ValueError as e:
            sheet_syncs_total.labels(outcome="failed").inc()
            logger.warning("Sheet sync for package_id=%s got an unreadable response: %s", package.id, e)
            return DeliveryResult.failure(f"unreadable sheets response: {e}")

        sheet_syncs_total.labels(outcome="updated" if row_number is not None else "appended").inc()
        logger.info("Synced package_id=%s to sheet %s", package.id, sheet_id)
        return DeliveryResult.success("updated" if row_number is not None else "appended")
