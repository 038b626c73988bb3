import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from clearance.engine import StatusTransitionEngine
from clearance.errors import InvalidTransitionError, PackageNotFoundError, PersistenceError
from clearance.locks import LocalPackageLocks
from clearance.models import DeliveryResult
from clearance.package_state import PackageStatus, PaymentStatus

from fakes import FIXED_NOW, make_package


@pytest.mark.asyncio
async def test_side_effects_run_in_order_after_update(engine, events):
    result = await engine.transition("pkg-1", "customs-cleared")

    assert events == [
        ("update", "pkg-1"),
        ("log", "Status changed to Customs Cleared"),
        ("notify", "customs_cleared"),
        ("sync", "customs-cleared"),
    ]
    assert [o.state for o in result.side_effects] == ["ok", "ok", "ok"]
    assert not result.degraded


@pytest.mark.asyncio
async def test_clearance_then_delivery(engine, store, notifier, syncer):
    store.packages["pkg-1"] = make_package(status=PackageStatus.CUSTOMS_PENDING)

    cleared = await engine.transition("pkg-1", "customs-cleared")
    assert cleared.package.status is PackageStatus.CUSTOMS_CLEARED
    assert cleared.package.customs_cleared_date == FIXED_NOW
    assert cleared.package.payment_status is PaymentStatus.PENDING
    assert cleared.package.total_fees == Decimal("4.86")

    delivered = await engine.transition("pkg-1", PackageStatus.DELIVERED)
    assert delivered.package.delivered_date == FIXED_NOW
    assert delivered.package.payment_status is PaymentStatus.PAID
    assert delivered.package.total_fees == delivered.package.customs_duty + delivered.package.vat

    assert [t for _, t in notifier.sent] == ["customs_cleared", "delivered"]
    # sync receives the post-update snapshot
    assert [p.status for p in syncer.synced] == [PackageStatus.CUSTOMS_CLEARED, PackageStatus.DELIVERED]


@pytest.mark.asyncio
async def test_delivered_forces_paid_from_any_payment_state(engine, store):
    store.packages["pkg-1"] = make_package(payment_status=PaymentStatus.PAID)
    result = await engine.transition("pkg-1", "delivered")
    assert result.package.payment_status is PaymentStatus.PAID


@pytest.mark.asyncio
async def test_repeat_customs_cleared_is_idempotent(engine, store):
    earlier = datetime(2026, 10, 2, tzinfo=timezone.utc)
    store.packages["pkg-1"] = make_package(status=PackageStatus.CUSTOMS_CLEARED, customs_cleared_date=earlier)
    result = await engine.transition("pkg-1", "customs-cleared")
    assert result.package.customs_cleared_date == earlier


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["received", "customs-pending", "on-hold"])
async def test_no_notification_for_quiet_statuses(engine, notifier, syncer, activity_log, status):
    result = await engine.transition("pkg-1", status)

    assert notifier.sent == []
    assert len(syncer.synced) == 1
    assert len(activity_log.entries) == 1
    notification = result.side_effects[1]
    assert notification.step == "notification" and notification.state == "skipped"


@pytest.mark.asyncio
async def test_each_transition_logs_exactly_once(engine, activity_log):
    for status in ["customs-pending", "customs-cleared", "ready-pickup", "on-hold", "delivered"]:
        await engine.transition("pkg-1", status)
    assert len(activity_log.entries) == 5
    assert activity_log.entries[2].action == "Status changed to Ready for Pickup"


@pytest.mark.asyncio
async def test_notification_failure_does_not_roll_back(engine, store, notifier, syncer):
    notifier.error = RuntimeError("sns throttled")

    result = await engine.transition("pkg-1", "ready-pickup")

    assert store.packages["pkg-1"].status is PackageStatus.READY_PICKUP
    assert result.degraded
    assert result.failed_steps == ["notification"]
    assert "sns throttled" in result.side_effects[1].detail
    # sync still attempted after the failed notification
    assert len(syncer.synced) == 1


@pytest.mark.asyncio
async def test_sync_failure_result_is_reported(engine, store, syncer):
    syncer.result = DeliveryResult.failure("sheets api returned 403")

    result = await engine.transition("pkg-1", "customs-pending")

    assert store.packages["pkg-1"].status is PackageStatus.CUSTOMS_PENDING
    assert result.failed_steps == ["sync"]
    assert result.side_effects[2].detail == "sheets api returned 403"


@pytest.mark.asyncio
async def test_activity_log_failure_does_not_block_later_steps(engine, activity_log, notifier, syncer):
    activity_log.fail = True

    result = await engine.transition("pkg-1", "delivered")

    assert result.failed_steps == ["activity_log"]
    assert len(notifier.sent) == 1
    assert len(syncer.synced) == 1


@pytest.mark.asyncio
async def test_skipped_delivery_is_not_a_failure(engine, notifier):
    notifier.result = DeliveryResult.skip("sms disabled for importer")
    result = await engine.transition("pkg-1", "customs-cleared")
    assert result.side_effects[1].state == "skipped"
    assert not result.degraded


@pytest.mark.asyncio
async def test_persistence_failure_runs_no_side_effects(engine, store, events):
    store.fail_updates = True

    with pytest.raises(PersistenceError):
        await engine.transition("pkg-1", "delivered")

    assert events == []
    assert store.packages["pkg-1"].status is PackageStatus.RECEIVED


@pytest.mark.asyncio
async def test_unknown_package(engine, events):
    with pytest.raises(PackageNotFoundError):
        await engine.transition("missing", "delivered")
    assert events == []


@pytest.mark.asyncio
async def test_unknown_status(engine, events):
    with pytest.raises(InvalidTransitionError):
        await engine.transition("pkg-1", "shipped")
    assert events == []


@pytest.mark.asyncio
async def test_strict_engine_rejects_leaving_delivered(store, activity_log, notifier, syncer):
    store.packages["pkg-1"] = make_package(status=PackageStatus.DELIVERED, delivered_date=FIXED_NOW)
    strict = StatusTransitionEngine(
        store, activity_log, notifier, syncer, LocalPackageLocks(), strict_transitions=True
    )
    with pytest.raises(InvalidTransitionError):
        await strict.transition("pkg-1", "received")
    assert store.updates == []


@pytest.mark.asyncio
async def test_default_engine_allows_manual_correction(engine, store):
    store.packages["pkg-1"] = make_package(status=PackageStatus.DELIVERED, delivered_date=FIXED_NOW)
    result = await engine.transition("pkg-1", "received")
    assert result.package.status is PackageStatus.RECEIVED
    assert result.package.delivered_date is None


@pytest.mark.asyncio
async def test_mark_paid_only_changes_payment(engine, store, activity_log, notifier, syncer):
    result = await engine.set_payment_status("pkg-1", True)

    assert result.package.payment_status is PaymentStatus.PAID
    assert result.package.status is PackageStatus.RECEIVED
    assert store.updates == [("pkg-1", {"payment_status": PaymentStatus.PAID})]
    assert [e.action for e in activity_log.entries] == ["Payment received"]
    assert notifier.sent == [] and syncer.synced == []


@pytest.mark.asyncio
async def test_mark_pending(engine, store, activity_log):
    store.packages["pkg-1"] = make_package(payment_status=PaymentStatus.PAID)
    result = await engine.set_payment_status("pkg-1", False)
    assert result.package.payment_status is PaymentStatus.PENDING
    assert activity_log.entries[-1].action == "Payment marked as pending"


@pytest.mark.asyncio
async def test_payment_toggle_on_missing_package(engine, activity_log):
    with pytest.raises(PackageNotFoundError):
        await engine.set_payment_status("missing", True)
    assert activity_log.entries == []


@pytest.mark.asyncio
async def test_same_package_transitions_are_serialized(engine, notifier, events):
    original_send = notifier.send

    async def slow_send(package, notification_type):
        await asyncio.sleep(0.01)
        return await original_send(package, notification_type)

    notifier.send = slow_send

    await asyncio.gather(
        engine.transition("pkg-1", "customs-cleared"),
        engine.transition("pkg-1", "ready-pickup"),
    )

    kinds = [kind for kind, _ in events]
    assert kinds == ["update", "log", "notify", "sync"] * 2
