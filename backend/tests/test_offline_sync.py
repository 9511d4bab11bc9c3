"""
Offline sync engine tests: admission, idempotent intake, ordered replay,
end-to-end application and the returned cache.
"""

from datetime import datetime

import pytest

from tillsync.models import AuditEvent, Batch, OfflineAction, Purchase, Sale, StockMovement
from tillsync.services import settings_service
from tillsync.services.offline_device_service import OfflineForbiddenError, OfflineRequestError

from conftest import adjustment_action, purchase_action, sale_action, stock_on_hand


def test_sync_requires_registered_device(engine, business, cashier):
    with pytest.raises(OfflineForbiddenError, match="not registered"):
        engine.sync_actions(business.id, cashier.id, "unknown-till", [])


def test_sync_rejects_device_of_another_user(engine, business, owner, cashier_device):
    with pytest.raises(OfflineForbiddenError, match="not registered"):
        engine.sync_actions(business.id, owner.id, cashier_device.id, [])


def test_sync_rejects_inactive_subscription(engine, business, cashier, cashier_device, db_session):
    business.subscription_status = "SUSPENDED"
    db_session.commit()

    with pytest.raises(OfflineForbiddenError, match="disabled"):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, [])


@pytest.mark.parametrize("actions, message", [
    ("not-a-list", "must be a list"),
    ([{"action_type": "REFUND", "payload": {}, "checksum": "x"}], "unsupported action_type"),
    ([{"action_type": "SALE_COMPLETE", "payload": [], "checksum": "x"}], "payload must be an object"),
    ([{"action_type": "SALE_COMPLETE", "payload": {}, "checksum": ""}], "checksum is required"),
    ([{"action_type": "SALE_COMPLETE", "payload": {}, "checksum": "x", "provisional_at": "yesterday"}], "ISO-8601"),
])
def test_sync_validates_batch_before_recording(engine, business, cashier, cashier_device, db_session, actions, message):
    with pytest.raises(OfflineRequestError, match=message):
        engine.sync_actions(business.id, cashier.id, cashier_device.id, actions)

    assert db_session.query(OfflineAction).count() == 0


def test_sale_is_applied_and_stock_moves(engine, business, branch, variant, cashier, cashier_device, db_session):
    response = engine.sync_actions(business.id, cashier.id, cashier_device.id, [
        sale_action("s1", branch_id=branch.id, variant_id=variant.id, quantity=3),
    ])

    result = response["results"][0]
    assert result["status"] == "APPLIED"
    assert result["checksum"] == "s1"
    assert result["local_audit_id"] == "s1"
    assert result["result"]["receipt_number"] == f"R-{branch.id:03d}-0001"

    sale = db_session.get(Sale, result["result"]["sale_id"])
    assert sale.status == "COMPLETED"
    assert sale.is_offline is True
    assert sale.offline_device_id == cashier_device.id
    assert stock_on_hand(business.id, branch.id, variant.id) == 7

    action = db_session.get(OfflineAction, result["id"])
    assert action.synced_at is not None
    assert action.applied_at is not None


def test_resubmitted_action_is_not_replayed(engine, business, branch, variant, cashier, cashier_device, db_session):
    action = sale_action("s1", branch_id=branch.id, variant_id=variant.id, quantity=2)

    first = engine.sync_actions(business.id, cashier.id, cashier_device.id, [action])
    assert stock_on_hand(business.id, branch.id, variant.id) == 8

    second = engine.sync_actions(business.id, cashier.id, cashier_device.id, [action])

    assert second["results"] == first["results"]
    assert stock_on_hand(business.id, branch.id, variant.id) == 8
    assert db_session.query(OfflineAction).count() == 1
    assert db_session.query(Sale).count() == 1
    assert db_session.query(AuditEvent).filter_by(action="OFFLINE_ACTION_INGESTED").count() == 1


def test_resubmitted_rejection_keeps_its_status(engine, business, branch, variant, cashier, cashier_device):
    action = sale_action("big", branch_id=branch.id, variant_id=variant.id, quantity=50)

    first = engine.sync_actions(business.id, cashier.id, cashier_device.id, [action])
    second = engine.sync_actions(business.id, cashier.id, cashier_device.id, [action])

    assert first["results"][0]["status"] == "REJECTED"
    assert second["results"][0]["status"] == "REJECTED"
    assert second["results"][0]["id"] == first["results"][0]["id"]


def test_same_checksum_on_another_device_is_a_new_action(engine, business, branch, variant, owner, cashier, owner_device, cashier_device, db_session):
    action = sale_action("s1", branch_id=branch.id, variant_id=variant.id)

    engine.sync_actions(business.id, cashier.id, cashier_device.id, [action])
    engine.sync_actions(business.id, owner.id, owner_device.id, [action])

    assert db_session.query(OfflineAction).count() == 2
    assert stock_on_hand(business.id, branch.id, variant.id) == 8


def test_actions_replay_in_provisional_order(engine, business, branch, variant, cashier, cashier_device, db_session):
    later = sale_action("t2", branch_id=branch.id, variant_id=variant.id, provisional_at=datetime(2026, 1, 5, 12, 0))
    earlier = sale_action("t1", branch_id=branch.id, variant_id=variant.id, provisional_at=datetime(2026, 1, 5, 9, 0))

    response = engine.sync_actions(business.id, cashier.id, cashier_device.id, [later, earlier])

    assert [r["checksum"] for r in response["results"]] == ["t1", "t2"]
    receipts = [r["result"]["receipt_number"] for r in response["results"]]
    assert receipts == [f"R-{branch.id:03d}-0001", f"R-{branch.id:03d}-0002"]


def test_earlier_sale_wins_scarce_stock(engine, business, branch, variant, cashier, cashier_device):
    later = sale_action("t2", branch_id=branch.id, variant_id=variant.id, quantity=6, provisional_at=datetime(2026, 1, 5, 12, 0))
    earlier = sale_action("t1", branch_id=branch.id, variant_id=variant.id, quantity=6, provisional_at=datetime(2026, 1, 5, 9, 0))

    response = engine.sync_actions(business.id, cashier.id, cashier_device.id, [later, earlier])

    by_checksum = {r["checksum"]: r for r in response["results"]}
    assert by_checksum["t1"]["status"] == "APPLIED"
    assert by_checksum["t2"]["status"] == "REJECTED"
    assert by_checksum["t2"]["conflict_reason"] == "STOCK_OVERSELL"


def test_actions_without_provisional_time_replay_first(engine, business, branch, variant, cashier, cashier_device):
    timed = sale_action("timed", branch_id=branch.id, variant_id=variant.id)
    untimed = sale_action("untimed", branch_id=branch.id, variant_id=variant.id)
    del untimed["provisional_at"]

    response = engine.sync_actions(business.id, cashier.id, cashier_device.id, [timed, untimed])

    assert [r["checksum"] for r in response["results"]] == ["untimed", "timed"]


def test_end_to_end_three_action_types(engine, business, branch, variant, supplier, owner, owner_device, db_session):
    settings_service.update_settings(business.id, approval_defaults={"stock_adjust": False})

    response = engine.sync_actions(business.id, owner.id, owner_device.id, [
        sale_action("sale-1", branch_id=branch.id, variant_id=variant.id, quantity=2),
        adjustment_action("adj-1", branch_id=branch.id, variant_id=variant.id, quantity=4),
        purchase_action("po-1", branch_id=branch.id, supplier_id=supplier.id, variant_id=variant.id),
    ])

    statuses = {r["checksum"]: r["status"] for r in response["results"]}
    assert statuses == {"sale-1": "APPLIED", "adj-1": "APPLIED", "po-1": "APPLIED"}

    # 10 - 2 sold + 4 adjusted
    assert stock_on_hand(business.id, branch.id, variant.id) == 12
    assert db_session.query(Purchase).count() == 1
    assert db_session.query(StockMovement).filter_by(movement_type="ADJUSTMENT_POSITIVE").count() == 1
    assert db_session.query(OfflineAction).filter_by(status="APPLIED").count() == 3

    cache = response["cache"]
    assert [b["id"] for b in cache["branches"]] == [branch.id]
    assert [v["id"] for v in cache["variants"]] == [variant.id]
    assert cache["stock_snapshots"][0]["quantity"] == 12
    assert cache["suppliers"] == [{"id": supplier.id, "name": supplier.name}]
    assert "ADJUST_INVENTORY" in cache["permissions"]["permissions"]
    assert cache["settings"]["stock_policies"]["negative_stock_allowed"] is False


def test_sync_refreshes_device_snapshot(engine, business, cashier, cashier_device, db_session):
    cashier_device.permissions_snapshot = {"permissions": ["SYSTEM_ADMIN"], "role_ids": []}
    db_session.commit()

    engine.sync_actions(business.id, cashier.id, cashier_device.id, [])

    db_session.refresh(cashier_device)
    assert "SYSTEM_ADMIN" not in cashier_device.permissions_snapshot["permissions"]
    assert cashier_device.last_seen_at is not None
    assert db_session.query(AuditEvent).filter_by(action="OFFLINE_SYNC").count() == 1


def test_cache_ships_batches_only_with_batch_tracking(engine, business, branch, variant, cashier, cashier_device, db_session):
    db_session.add(Batch(business_id=business.id, branch_id=branch.id, variant_id=variant.id, code="LOT-1"))
    db_session.commit()

    response = engine.sync_actions(business.id, cashier.id, cashier_device.id, [])
    assert response["cache"]["batches"] == []

    settings_service.update_settings(business.id, stock_policies={"batch_tracking_enabled": True})
    response = engine.sync_actions(business.id, cashier.id, cashier_device.id, [])
    assert [b["code"] for b in response["cache"]["batches"]] == ["LOT-1"]


def test_purchase_failure_is_recorded_as_failed(engine, business, branch, variant, owner, owner_device):
    action = purchase_action("po-1", branch_id=branch.id, supplier_id=999999, variant_id=variant.id)

    response = engine.sync_actions(business.id, owner.id, owner_device.id, [action])

    result = response["results"][0]
    assert result["status"] == "FAILED"
    assert result["error_message"] == "Supplier not found."


def test_unexpected_applier_error_becomes_failed(business, branch, variant, cashier, db_session):
    from tillsync.services.offline_sync_service import OfflineSyncService

    def exploding_applier(ctx, payload):
        raise RuntimeError("printer on fire")

    engine = OfflineSyncService(appliers={"SALE_COMPLETE": exploding_applier})
    device = engine.devices.register_device(business.id, cashier.id, "Front Till", "till-1")

    response = engine.sync_actions(business.id, cashier.id, device.id, [
        sale_action("s1", branch_id=branch.id, variant_id=variant.id),
    ])

    result = response["results"][0]
    assert result["status"] == "FAILED"
    assert result["error_message"] == "printer on fire"
    assert stock_on_hand(business.id, branch.id, variant.id) == 10

    # Intake is audited before replay, so the failure does not erase it
    ingested = db_session.query(AuditEvent).filter_by(action="OFFLINE_ACTION_INGESTED").one()
    assert ingested.resource_id == str(result["id"])
    failed = db_session.query(AuditEvent).filter_by(action="OFFLINE_ACTION_FAILED").one()
    assert failed.resource_id == str(result["id"])
    assert failed.outcome == "FAILURE"
    assert failed.metadata_json["action_type"] == "SALE_COMPLETE"
    assert failed.metadata_json["conflict_reason"] is None
    assert failed.metadata_json["device_id"] == device.id


def test_lost_insert_race_returns_stored_record(business, branch, variant, cashier, db_session, monkeypatch):
    from sqlalchemy.orm import Query

    from tillsync.services.offline_appliers import ApplyOutcome
    from tillsync.services.offline_sync_service import OfflineSyncService

    calls = []

    def counting_applier(ctx, payload):
        calls.append(payload)
        return ApplyOutcome(status="APPLIED", result={"sale_id": 41})

    engine = OfflineSyncService(appliers={"SALE_COMPLETE": counting_applier})
    device = engine.devices.register_device(business.id, cashier.id, "Front Till", "till-1")
    action = sale_action("s1", branch_id=branch.id, variant_id=variant.id)
    first = engine.sync_actions(business.id, cashier.id, device.id, [action])["results"][0]

    # The checksum lookup misses once, as if a concurrent request inserted the row right after it
    original_first = Query.first
    missed = []

    def first_missing_once(self):
        if not missed and self.column_descriptions[0]["entity"] is OfflineAction:
            missed.append(True)
            return None
        return original_first(self)

    monkeypatch.setattr(Query, "first", first_missing_once)
    second = engine.sync_actions(business.id, cashier.id, device.id, [action])["results"][0]

    assert missed == [True]
    assert second == first
    assert second["status"] == "APPLIED"
    assert len(calls) == 1
    assert db_session.query(OfflineAction).count() == 1
    assert db_session.query(AuditEvent).filter_by(action="OFFLINE_ACTION_INGESTED").count() == 1
