"""
Package status transition engine.

transition(): validate -> derive fields -> one atomic update -> side effects.
Side effects run after the update commits, in a fixed order:
  1. activity log   2. customer notification (if the status has one)   3. sheet sync
The committed status is authoritative: a failing side effect is logged, counted
and reported in the result, never rolled back and never blocks later steps.
Persistence failure aborts before any side effect runs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Awaitable, Callable, Literal, Protocol

from clearance.duty import calculate_duty
from clearance.errors import ClearanceError, InvalidTransitionError, PackageNotFoundError, PersistenceError
from clearance.metrics import (
    package_transitions_total,
    payment_updates_total,
    side_effect_failures_total,
    transitions_rejected_total,
)
from clearance.models import DeliveryResult, Package
from clearance.package_state import (
    TRANSITION_RULES,
    NotificationType,
    PackageStatus,
    PaymentStatus,
    display_text,
    is_valid_transition,
    notification_for,
    parse_status,
)

logger = logging.getLogger(__name__)

STEP_ACTIVITY_LOG = "activity_log"
STEP_NOTIFICATION = "notification"
STEP_SYNC = "sync"

PAYMENT_LOG_TEXT = {
    PaymentStatus.PAID: "Payment received",
    PaymentStatus.PENDING: "Payment marked as pending",
}


class PackageRepository(Protocol):
    async def get_package(self, package_id: str) -> Package | None: ...
    async def update_package(self, package_id: str, fields: dict[str, Any]) -> Package: ...


class ActivityLog(Protocol):
    async def append(self, package_id: str, action: str) -> Any: ...
    async def list_for_package(self, package_id: str) -> list[Any]: ...


class Notifier(Protocol):
    async def send(self, package: Package, notification_type: NotificationType) -> DeliveryResult: ...


class Syncer(Protocol):
    async def sync(self, package: Package) -> DeliveryResult: ...


class PackageLocks(Protocol):
    def hold(self, package_id: str) -> AsyncContextManager[None]: ...


@dataclass(frozen=True)
class SideEffectOutcome:
    step: str
    state: Literal["ok", "skipped", "failed"]
    detail: str | None = None


@dataclass
class TransitionResult:
    package: Package
    side_effects: list[SideEffectOutcome] = field(default_factory=list)

    @property
    def failed_steps(self) -> list[str]:
        return [o.step for o in self.side_effects if o.state == "failed"]

    @property
    def degraded(self) -> bool:
        return bool(self.failed_steps)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_updates(package: Package, requested: PackageStatus, now: datetime) -> dict[str, Any]:
    """
    Field updates for moving package to requested, from TRANSITION_RULES.
    Repeating customs-cleared or delivered keeps the existing date. Statuses
    before customs-cleared clear both dates; statuses after it back-fill a
    missing cleared date. Fees are recomputed so total_fees == customs_duty + vat.
    """
    rule = TRANSITION_RULES[requested]
    repeat = package.status == requested
    updates: dict[str, Any] = {"status": requested}

    if requested == PackageStatus.CUSTOMS_CLEARED and not (repeat and package.customs_cleared_date):
        updates["customs_cleared_date"] = now
    elif rule.clears_customs and package.customs_cleared_date is None:
        updates["customs_cleared_date"] = now
    elif rule.clears_customs is False and package.customs_cleared_date is not None:
        updates["customs_cleared_date"] = None

    if rule.marks_delivered and not (repeat and package.delivered_date):
        updates["delivered_date"] = now
    elif rule.marks_delivered is False and package.delivered_date is not None:
        updates["delivered_date"] = None

    if rule.forces_paid:
        updates["payment_status"] = PaymentStatus.PAID

    fees = calculate_duty(package.items, package.declared_value or None, package.purpose)
    updates["customs_duty"] = fees.customs_duty
    updates["vat"] = fees.vat
    updates["total_fees"] = fees.total_fees
    return updates


class StatusTransitionEngine:
    def __init__(
        self,
        store: PackageRepository,
        activity_log: ActivityLog,
        notifier: Notifier,
        syncer: Syncer,
        locks: PackageLocks,
        strict_transitions: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.activity_log = activity_log
        self.notifier = notifier
        self.syncer = syncer
        self.locks = locks
        self.strict_transitions = strict_transitions
        self.clock = clock

    async def transition(self, package_id: str, requested_status: str | PackageStatus) -> TransitionResult:
        """
        Move package_id to requested_status.
        Raises InvalidTransitionError, PackageNotFoundError, PackageBusyError or
        PersistenceError; side-effect failures are reported in the result instead.
        """
        try:
            requested = parse_status(requested_status)
        except InvalidTransitionError:
            transitions_rejected_total.labels(reason="unknown_status").inc()
            raise

        async with self.locks.hold(package_id):
            package = await self._load(package_id)
            if not is_valid_transition(package.status, requested, self.strict_transitions):
                transitions_rejected_total.labels(reason="not_allowed").inc()
                raise InvalidTransitionError(requested=requested.value, current=package.status.value)

            updates = derive_updates(package, requested, self.clock())
            updated = await self._persist(package_id, updates)
            package_transitions_total.labels(status=requested.value).inc()
            logger.info("Package package_id=%s %s -> %s", package_id, package.status.value, requested.value)

            outcomes = [
                await self._run_step(
                    STEP_ACTIVITY_LOG,
                    package_id,
                    lambda: self.activity_log.append(package_id, f"Status changed to {display_text(requested)}"),
                )
            ]
            notification_type = notification_for(requested)
            if notification_type is None:
                outcomes.append(SideEffectOutcome(STEP_NOTIFICATION, "skipped", f"no notification for {requested.value}"))
            else:
                outcomes.append(
                    await self._run_step(
                        STEP_NOTIFICATION,
                        package_id,
                        lambda: self.notifier.send(updated, notification_type),
                    )
                )
            outcomes.append(await self._run_step(STEP_SYNC, package_id, lambda: self.syncer.sync(updated)))

        return TransitionResult(package=updated, side_effects=outcomes)

    async def set_payment_status(self, package_id: str, paid: bool) -> TransitionResult:
        """Manual payment toggle. Logs an activity entry; no notification, no sync."""
        payment_status = PaymentStatus.PAID if paid else PaymentStatus.PENDING
        async with self.locks.hold(package_id):
            await self._load(package_id)
            updated = await self._persist(package_id, {"payment_status": payment_status})
            payment_updates_total.labels(payment_status=payment_status.value).inc()
            logger.info("Package package_id=%s payment -> %s", package_id, payment_status.value)
            outcome = await self._run_step(
                STEP_ACTIVITY_LOG,
                package_id,
                lambda: self.activity_log.append(package_id, PAYMENT_LOG_TEXT[payment_status]),
            )
        return TransitionResult(package=updated, side_effects=[outcome])

    async def _load(self, package_id: str) -> Package:
        package = await self.store.get_package(package_id)
        if package is None:
            transitions_rejected_total.labels(reason="not_found").inc()
            raise PackageNotFoundError(package_id)
        return package

    async def _persist(self, package_id: str, updates: dict[str, Any]) -> Package:
        try:
            return await self.store.update_package(package_id, updates)
        except ClearanceError:
            raise
        except Exception as e:
            raise PersistenceError(f"update of package {package_id} failed: {e}") from e

    async def _run_step(
        self,
        step: str,
        package_id: str,
        action: Callable[[], Awaitable[Any]],
    ) -> SideEffectOutcome:
        try:
            result = await action()
        except Exception as e:
            side_effect_failures_total.labels(step=step).inc()
            logger.exception("Side effect %s failed for package_id=%s: %s", step, package_id, e)
            return SideEffectOutcome(step, "failed", str(e) or type(e).__name__)

        if isinstance(result, DeliveryResult):
            if not result.ok:
                side_effect_failures_total.labels(step=step).inc()
                logger.warning("Side effect %s failed for package_id=%s: %s", step, package_id, result.detail)
                return SideEffectOutcome(step, "failed", result.detail)
            if result.skipped:
                return SideEffectOutcome(step, "skipped", result.detail)
            return SideEffectOutcome(step, "ok", result.detail)
        return SideEffectOutcome(step, "ok")
