"""
Customer SMS notifications for package status changes.
Transport is AWS SNS (boto3 runs in a worker thread so the event loop is not blocked).
Every send is recorded in sms_notifications as pending -> sent | failed.
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable

import boto3
from botocore.config import Config

from clearance.config import settings
from clearance.db import PackageStore
from clearance.duty import format_currency
from clearance.metrics import notifications_sent_total
from clearance.models import DeliveryResult, Package
from clearance.package_state import NotificationType

logger = logging.getLogger(__name__)

SMS_TEMPLATES: dict[NotificationType, Callable[[Package], str]] = {
    NotificationType.CUSTOMS_CLEARED: lambda pkg: (
        f"{settings.sms_brand}: Package {pkg.tracking_number} cleared customs. "
        f"Fees: {format_currency(pkg.total_fees)}. Preparing for pickup."
    ),
    NotificationType.READY_FOR_PICKUP: lambda pkg: (
        f"{settings.sms_brand}: Package {pkg.tracking_number} is ready for pickup! "
        f"Total: {format_currency(pkg.total_fees)}. Hours: Mon-Fri 9AM-6PM."
    ),
    NotificationType.DELIVERED: lambda pkg: (
        f"{settings.sms_brand}: Package {pkg.tracking_number} delivered! "
        f"Thank you for using {settings.sms_brand}."
    ),
}


def render_message(package: Package, notification_type: NotificationType) -> str:
    return SMS_TEMPLATES[notification_type](package)


def normalize_phone(phone: str) -> str:
    """'+503 7777-8888' -> '+50377778888'"""
    return re.sub(r"[\s\-().]", "", phone)


class SnsSmsSender:
    """Sends one SMS through SNS publish. Raises on transport failure."""

    def __init__(self, client: Any = None):
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client(
                "sns",
                region_name=settings.aws_region,
                config=Config(
                    connect_timeout=settings.sms_timeout_sec,
                    read_timeout=settings.sms_timeout_sec,
                    retries={"max_attempts": settings.sms_max_attempts, "mode": "standard"},
                ),
            )
        return self._client

    def _publish(self, phone: str, message: str) -> str:
        attributes = {
            "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"},
        }
        if settings.sms_sender_id:
            attributes["AWS.SNS.SMS.SenderID"] = {"DataType": "String", "StringValue": settings.sms_sender_id}
        resp = self._get_client().publish(
            PhoneNumber=phone,
            Message=message,
            MessageAttributes=attributes,
        )
        return resp.get("MessageId", "")

    async def send_sms(self, phone: str, message: str) -> str:
        return await asyncio.to_thread(self._publish, normalize_phone(phone), message)


class NotificationDispatcher:
    """
    send(package, type) -> DeliveryResult. Skips when the importer has SMS
    disabled or the package has no phone; transport errors become failures.
    """

    def __init__(self, store: PackageStore, sender: SnsSmsSender):
        self.store = store
        self.sender = sender

    async def send(self, package: Package, notification_type: NotificationType) -> DeliveryResult:
        notification_type = NotificationType(notification_type)
        importer = await self.store.get_importer(package.importer_id)
        if importer is None:
            return DeliveryResult.failure(f"importer {package.importer_id} not found")
        if not importer.sms_enabled:
            return DeliveryResult.skip("sms disabled for importer")
        if not package.customer_phone:
            return DeliveryResult.skip("package has no customer phone")

        message = render_message(package, notification_type)
        try:
            record = await self.store.add_sms_notification(package.id, package.customer_phone, message)
        except Exception as e:
            logger.warning("SMS record for package_id=%s not stored: %s", package.id, e)
            return DeliveryResult.failure(f"sms record not stored: {e}")
        try:
            message_id = await self.sender.send_sms(package.customer_phone, message)
        except Exception as e:
            logger.warning("SMS %s for package_id=%s failed: %s", notification_type.value, package.id, e)
            await self._mark(record.id, "failed", error=str(e))
            return DeliveryResult.failure(str(e))

        await self._mark(record.id, "sent", sent_at=datetime.now(timezone.utc))
        notifications_sent_total.labels(type=notification_type.value).inc()
        logger.info("SMS %s sent for package_id=%s (message_id=%s)", notification_type.value, package.id, message_id)
        return DeliveryResult.success(message_id)

    async def _mark(self, record_id: int, status: str, **fields: Any) -> None:
        try:
            await self.store.mark_sms_notification(record_id, status, **fields)
        except Exception as e:
            logger.warning("SMS record %s not marked %s: %s", record_id, status, e)
