"""
Pydantic models for packages, importers and their audit/notification records.
Money fields are Decimal (NUMERIC in Postgres) so fee sums stay exact.
"""
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from clearance.package_state import PackageStatus, PaymentStatus

DeclarationPurpose = Literal["personal", "commercial", "gift", "sample"]
SmsStatus = Literal["pending", "sent", "failed"]


class PackageItem(BaseModel):
    name: str
    description: str | None = None
    quantity: int = Field(default=1, ge=0)
    unit_value: Decimal = Field(default=Decimal("0"), ge=0, description="Value per unit in USD")
    total_value: Decimal | None = Field(default=None, ge=0, description="quantity * unit_value when omitted")
    hs_code: str | None = Field(default=None, description="Harmonized System code")
    weight: float | None = None
    category: str | None = None

    @model_validator(mode="after")
    def _fill_total_value(self) -> "PackageItem":
        if self.total_value is None:
            self.total_value = self.unit_value * self.quantity
        return self


class Package(BaseModel):
    id: str
    importer_id: str
    tracking_number: str
    customer_name: str
    customer_phone: str
    customer_email: str | None = None
    origin: str = ""
    carrier: str | None = None
    items: list[PackageItem] = Field(default_factory=list)
    declared_value: Decimal = Decimal("0")
    purpose: DeclarationPurpose = "personal"
    customs_duty: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")
    total_fees: Decimal = Decimal("0")
    status: PackageStatus = PackageStatus.RECEIVED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    received_date: datetime
    customs_cleared_date: datetime | None = None
    delivered_date: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Importer(BaseModel):
    """Client organization; owns its SMS and sheet sync configuration."""
    id: str
    name: str
    sms_enabled: bool = True
    google_sheet_id: str | None = None
    google_access_token: str | None = None


class ActivityLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    package_id: str
    action: str
    timestamp: datetime


class SmsNotification(BaseModel):
    id: int
    package_id: str
    customer_phone: str
    message: str
    status: SmsStatus = "pending"
    error: str | None = None
    sent_at: datetime | None = None
    created_at: datetime | None = None


class DeliveryResult(BaseModel):
    """Outcome reported by a notification or sync adapter. Adapters return it instead of raising."""
    ok: bool
    skipped: bool = False
    detail: str | None = None

    @classmethod
    def success(cls, detail: str | None = None) -> "DeliveryResult":
        return cls(ok=True, detail=detail)

    @classmethod
    def skip(cls, detail: str) -> "DeliveryResult":
        return cls(ok=True, skipped=True, detail=detail)

    @classmethod
    def failure(cls, detail: str) -> "DeliveryResult":
        return cls(ok=False, detail=detail)
