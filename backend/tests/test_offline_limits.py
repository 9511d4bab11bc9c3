"""
Offline ceilings: duration expiry and queue count/value limits.
"""

import pytest

from tillsync.models import OfflineAction, AuditEvent
from tillsync.services import settings_service
from tillsync.services.offline_device_service import OfflineForbiddenError, OfflineRequestError
from tillsync.services.offline_limits_service import (
    OfflineLimits,
    resolve_offline_limits,
    sale_value_cents,
)

from conftest import hours_ago, sale_action


def test_tier_defaults_apply_without_settings():
    limits = resolve_offline_limits("ENTERPRISE", None)
    assert limits == OfflineLimits(max_duration_hours=168, max_sales_count=2000, max_total_value_cents=500_000_000)


def test_tenant_settings_override_tier_defaults(business, db_session):
    settings = settings_service.update_settings(
        business.id, pos_policies={"offline_limits": {"max_sales_count": 3}}
    )
    limits = resolve_offline_limits("BUSINESS", settings)

    assert limits.max_sales_count == 3
    assert limits.max_duration_hours == 72


def test_sale_value_ignores_junk():
    assert sale_value_cents({"total_cents": 1500}) == 1500
    assert sale_value_cents({"total_cents": "1500"}) == 0
    assert sale_value_cents({"total_cents": True}) == 0
    assert sale_value_cents(None) == 0


def test_stale_device_expires_and_stays_blocked(engine, business, branch, variant, cashier, cashier_device, db_session):
    cashier_device.last_seen_at = hours_ago(73)
    db_session.commit()

    with pytest.raises(OfflineForbiddenError, match="duration exceeded"):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, [
            sale_action("s1", branch_id=branch.id, variant_id=variant.id),
        ])

    db_session.refresh(cashier_device)
    assert cashier_device.status == "EXPIRED"
    assert db_session.query(OfflineAction).count() == 0
    assert db_session.query(AuditEvent).filter_by(action="OFFLINE_DURATION_EXCEEDED").count() == 1

    with pytest.raises(OfflineForbiddenError, match="not active"):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, [])



def test_duration_checked_before_batch_validation(engine, business, cashier, cashier_device, db_session):
    cashier_device.last_seen_at = hours_ago(73)
    db_session.commit()

    with pytest.raises(OfflineForbiddenError, match="duration exceeded"):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, "junk")

    db_session.refresh(cashier_device)
    assert cashier_device.status == "EXPIRED"

def test_duration_measured_from_created_at_when_never_seen(engine, business, cashier, cashier_device, db_session):
    cashier_device.last_seen_at = None
    cashier_device.created_at = hours_ago(100)
    db_session.commit()

    with pytest.raises(OfflineForbiddenError):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, [])


def test_queue_count_ceiling_rejects_whole_batch(engine, business, branch, variant, cashier, cashier_device, db_session):
    settings_service.update_settings(business.id, pos_policies={"offline_limits": {"max_sales_count": 1}})

    with pytest.raises(OfflineRequestError, match="queue exceeds"):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, [
            sale_action("s1", branch_id=branch.id, variant_id=variant.id),
            sale_action("s2", branch_id=branch.id, variant_id=variant.id),
        ])

    assert db_session.query(OfflineAction).count() == 0


def test_queue_value_ceiling_rejects_whole_batch(engine, business, branch, variant, cashier, cashier_device, db_session):
    settings_service.update_settings(business.id, pos_policies={"offline_limits": {"max_total_value_cents": 1500}})

    with pytest.raises(OfflineRequestError, match="total exceeds"):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, [
            sale_action("s1", branch_id=branch.id, variant_id=variant.id),
            sale_action("s2", branch_id=branch.id, variant_id=variant.id),
        ])

    assert db_session.query(OfflineAction).count() == 0


def test_queue_ceiling_counts_existing_pending_sales(engine, business, branch, variant, cashier, cashier_device, db_session):
    settings_service.update_settings(business.id, pos_policies={"offline_limits": {"max_sales_count": 1}})
    db_session.add(OfflineAction(
        business_id=business.id,
        device_id=cashier_device.id,
        user_id=cashier.id,
        action_type="SALE_COMPLETE",
        payload={"total_cents": 1000},
        checksum="stuck",
        status="PENDING",
    ))
    db_session.commit()

    with pytest.raises(OfflineRequestError):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, [
            sale_action("s1", branch_id=branch.id, variant_id=variant.id),
        ])


def test_zero_ceiling_disables_check(engine, business, branch, variant, cashier, cashier_device):
    settings_service.update_settings(business.id, pos_policies={"offline_limits": {"max_sales_count": 0}})

    response = engine.sync_actions(business.id, cashier.id, cashier_device.id, [
        sale_action("s1", branch_id=branch.id, variant_id=variant.id),
        sale_action("s2", branch_id=branch.id, variant_id=variant.id),
    ])
    assert [r["status"] for r in response["results"]] == ["APPLIED", "APPLIED"]
