# Overview: Offline synchronization engine; intake, ordered replay, conflict resolution and read models.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OfflineAction, OfflineDevice
from tillsync.time_utils import parse_iso_datetime, to_utc_z, utcnow
from .audit_service import AuditRecord
from .concurrency import lock_for_update
from .offline_appliers import (
    ACTION_TYPES,
    APPLIERS,
    APPROVAL_FINALIZERS,
    REQUIRED_PERMISSIONS,
    Applier,
    ApplyContext,
    ApplyOutcome,
    permission_revoked,
)
from .offline_cache_service import build_offline_cache
from .offline_collaborators import OfflineCollaborators
from .offline_device_service import DeviceRegistry, OfflineForbiddenError, OfflineRequestError
from .offline_limits_service import LimitGovernor, count_pending_actions, resolve_offline_limits
from .offline_risk_service import DEFAULT_STALE_THRESHOLD_HOURS, get_risk_overview
from .tenant_service import is_active_member
"""
Offline Sync Invariants (authoritative)

Admission (whole call, nothing recorded on failure):
- subscription has offline enabled and is not EXPIRED/SUSPENDED
- caller's membership is ACTIVE; device exists, is owned by the caller, is ACTIVE
- every action is well formed
- duration ceiling (may flip the device to EXPIRED), then queue ceilings

Intake:
- (business_id, device_id, checksum) is unique. A resubmitted checksum returns
  the stored record unchanged; it is never replayed.
- The record and its OFFLINE_ACTION_INGESTED event are committed before any
  business effect is attempted.

Replay:
- ascending provisional_at, missing timestamps first, ties keep submission order
- strictly sequential within a call
- permissions are resolved once per call, at replay time; the device's
  permissions_snapshot is never consulted
- each attempt assigns exactly one status and commits it before the next action

APPLIED is final. CONFLICT and REJECTED can be re-entered through resolve_conflict.
"""


RESOLUTIONS = {"DISMISS", "RETRY", "OVERRIDE_PRICE", "SYNC_APPROVAL"}
CONFLICT_STATUSES = ("CONFLICT", "REJECTED")


def _replay_order(action: dict) -> tuple:
    provisional_at = action["provisional_at"]
    return (provisional_at is not None, provisional_at or datetime.min)


class OfflineSyncService:
    """
    Single entry point for queued offline work.

    Collaborators and the applier table are injectable; by default the
    SQLAlchemy-backed services of this package are used.
    """

    def __init__(
        self,
        collaborators: OfflineCollaborators | None = None,
        appliers: dict[str, Applier] | None = None,
    ):
        self.collaborators = collaborators or OfflineCollaborators.default()
        self.appliers = dict(APPLIERS)
        if appliers:
            self.appliers.update(appliers)
        self.devices = DeviceRegistry(self.collaborators)
        self.governor = LimitGovernor(self.collaborators)

    # ------------------------------------------------------------------
    # helpers

    def _audit(self, business_id: int, user_id: int, action: str, *, resource_id=None, outcome: str = "SUCCESS", metadata: dict | None = None) -> None:
        self.collaborators.audit.log_event(AuditRecord(
            business_id=business_id,
            user_id=user_id,
            action=action,
            outcome=outcome,
            resource_type="OfflineAction",
            resource_id=resource_id,
            metadata={"offline": True, **(metadata or {})},
        ))

    def _require_offline_subscription(self, business_id: int):
        subscription = self.collaborators.subscriptions.get_subscription(business_id)
        if not subscription or not subscription.offline_enabled:
            raise OfflineForbiddenError("Offline mode not enabled for this subscription.")
        if subscription.is_inactive:
            raise OfflineForbiddenError("Offline mode is disabled for this subscription.")
        return subscription

    def _require_active_device(self, business_id: int, user_id: int, device_id: str) -> OfflineDevice:
        if not is_active_member(business_id, user_id):
            raise OfflineForbiddenError("User not active for this business.")
        device = self.devices.get_owned_device(business_id, user_id, device_id) if device_id else None
        if not device:
            raise OfflineForbiddenError("Device not registered for this user.")
        if device.status != "ACTIVE":
            raise OfflineForbiddenError("Offline device is not active.")
        return device

    @staticmethod
    def _normalize_actions(actions) -> list[dict]:
        if not isinstance(actions, list):
            raise OfflineRequestError("actions must be a list")

        normalized = []
        for index, action in enumerate(actions):
            if not isinstance(action, dict):
                raise OfflineRequestError(f"actions[{index}] must be an object")
            action_type = action.get("action_type")
            if action_type not in ACTION_TYPES:
                raise OfflineRequestError(f"actions[{index}]: unsupported action_type {action_type!r}")
            if not isinstance(action.get("payload"), dict):
                raise OfflineRequestError(f"actions[{index}]: payload must be an object")
            checksum = action.get("checksum")
            if not isinstance(checksum, str) or not checksum.strip():
                raise OfflineRequestError(f"actions[{index}]: checksum is required")
            try:
                provisional_at = parse_iso_datetime(action.get("provisional_at"))
            except (TypeError, ValueError, AttributeError):
                raise OfflineRequestError(f"actions[{index}]: provisional_at must be an ISO-8601 datetime")

            local_audit_id = action.get("local_audit_id")
            normalized.append({
                "action_type": action_type,
                "payload": action["payload"],
                "checksum": checksum,
                "local_audit_id": str(local_audit_id) if local_audit_id is not None else None,
                "provisional_at": provisional_at,
            })
        return normalized

    def _record(self, business_id: int, user_id: int, device_id: str, action: dict) -> tuple[OfflineAction, bool]:
        """Insert the action under the checksum constraint. Returns (record, created)."""
        lookup = dict(business_id=business_id, device_id=device_id, checksum=action["checksum"])
        existing = db.session.query(OfflineAction).filter_by(**lookup).first()
        if existing:
            return existing, False

        record = OfflineAction(
            business_id=business_id,
            device_id=device_id,
            user_id=user_id,
            action_type=action["action_type"],
            payload=action["payload"],
            checksum=action["checksum"],
            local_audit_id=action["local_audit_id"],
            provisional_at=action["provisional_at"],
            status="PENDING",
        )
        db.session.add(record)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost the race to a concurrent submission of the same checksum
            db.session.rollback()
            existing = db.session.query(OfflineAction).filter_by(**lookup).first()
            if existing is None:
                raise
            return existing, False

        self._audit(
            business_id,
            user_id,
            "OFFLINE_ACTION_INGESTED",
            resource_id=record.id,
            metadata={
                "action_type": record.action_type,
                "device_id": device_id,
                "local_audit_id": record.local_audit_id,
                "provisional_at": to_utc_z(record.provisional_at),
            },
        )
        db.session.commit()
        return record, True

    def _run(self, func, ctx: ApplyContext, *args) -> ApplyOutcome:
        """Invoke an applier; anything it did not classify becomes FAILED with the raw message."""
        try:
            return func(ctx, *args)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception(
                "Offline replay failed (business_id=%s device_id=%s)", ctx.business_id, ctx.device_id
            )
            return ApplyOutcome(status="FAILED", error_message=str(exc) or exc.__class__.__name__)

    def _apply(self, action_type: str, ctx: ApplyContext, payload: dict) -> ApplyOutcome:
        required = REQUIRED_PERMISSIONS.get(action_type)
        if required and not ctx.access.has(required):
            return permission_revoked()
        applier = self.appliers.get(action_type)
        if applier is None:
            return ApplyOutcome(status="REJECTED", error_message="Unsupported offline action.")
        return self._run(applier, ctx, payload)

    def _finalize(self, record: OfflineAction, outcome: ApplyOutcome, user_id: int) -> OfflineAction:
        now = utcnow()
        record.status = outcome.status
        record.result = outcome.result
        record.conflict_reason = outcome.conflict_reason
        record.conflict_payload = outcome.conflict_payload
        record.error_message = outcome.error_message
        record.synced_at = now
        record.applied_at = now if outcome.status == "APPLIED" else None

        self._audit(
            record.business_id,
            user_id,
            f"OFFLINE_ACTION_{outcome.status}",
            resource_id=record.id,
            outcome="SUCCESS" if outcome.status == "APPLIED" else "FAILURE",
            metadata={
                "action_type": record.action_type,
                "conflict_reason": outcome.conflict_reason,
                "device_id": record.device_id,
            },
        )
        db.session.commit()
        return record

    # ------------------------------------------------------------------
    # sync

    def sync_actions(self, business_id: int, user_id: int, device_id: str, actions: list[dict]) -> dict:
        """
        Admit, record and replay a batch of queued actions.

        Returns {"results": [...], "cache": {...}}. Admission failures raise
        OfflineForbiddenError / OfflineRequestError before anything is
        recorded; per-action outcomes never raise.
        """
        subscription = self._require_offline_subscription(business_id)
        device = self._require_active_device(business_id, user_id, device_id)

        limits = resolve_offline_limits(subscription.tier, self.collaborators.settings.get_settings(business_id))
        self.governor.enforce_duration(device, limits, user_id)
        normalized = self._normalize_actions(actions)
        self.governor.enforce_queue(business_id, device_id, normalized, limits)

        access = self.collaborators.permissions.resolve_user_access(user_id, business_id)
        device.last_seen_at = utcnow()
        device.permissions_snapshot = access.to_dict()
        db.session.commit()

        ctx = ApplyContext(
            business_id=business_id,
            user_id=user_id,
            device_id=device_id,
            access=access,
            collaborators=self.collaborators,
        )

        results = []
        for action in sorted(normalized, key=_replay_order):
            record, created = self._record(business_id, user_id, device_id, action)
            if created:
                outcome = self._apply(record.action_type, ctx, record.payload)
                record = self._finalize(record, outcome, user_id)
            results.append(record.to_result())

        self._audit(business_id, user_id, "OFFLINE_SYNC", metadata={"count": len(normalized), "device_id": device_id})
        db.session.commit()

        current_app.logger.info(
            "Offline sync business_id=%s device_id=%s actions=%d", business_id, device_id, len(normalized)
        )

        cache = build_offline_cache(business_id, access, self.collaborators.settings.get_settings(business_id))
        return {"results": results, "cache": cache}

    # ------------------------------------------------------------------
    # conflict workstation

    def list_conflicts(self, business_id: int, device_id: str, limit=None, cursor=None) -> dict:
        """CONFLICT and REJECTED actions for a device, newest first, cursor-paginated."""
        default_size = current_app.config.get("OFFLINE_CONFLICT_PAGE_SIZE", 50)
        max_size = current_app.config.get("OFFLINE_CONFLICT_MAX_PAGE_SIZE", 200)
        try:
            page_size = default_size if limit in (None, "") else int(limit)
            cursor_id = None if cursor in (None, "") else int(cursor)
        except (TypeError, ValueError):
            raise OfflineRequestError("limit and cursor must be integers")
        if page_size < 1:
            raise OfflineRequestError("limit must be positive")
        page_size = min(page_size, max_size)

        query = db.session.query(OfflineAction).filter(
            OfflineAction.business_id == business_id,
            OfflineAction.device_id == device_id,
            OfflineAction.status.in_(CONFLICT_STATUSES),
        )
        if cursor_id is not None:
            query = query.filter(OfflineAction.id < cursor_id)
        rows = query.order_by(OfflineAction.id.desc()).limit(page_size + 1).all()

        has_more = len(rows) > page_size
        items = rows[:page_size]
        return {
            "items": [row.to_dict() for row in items],
            "next_cursor": items[-1].id if has_more else None,
        }

    def resolve_conflict(self, business_id: int, user_id: int, action_id: int, resolution: str) -> OfflineAction:
        """
        Operator decision on a CONFLICT/REJECTED action.

        DISMISS closes it; SYNC_APPROVAL follows the referenced approval;
        RETRY replays the stored payload; OVERRIDE_PRICE replays a sale
        without the price variance check.
        """
        if resolution not in RESOLUTIONS:
            raise OfflineRequestError(f"Unknown resolution: {resolution}")

        action = lock_for_update(
            db.session.query(OfflineAction).filter_by(id=action_id, business_id=business_id)
        ).first()
        if not action:
            raise OfflineRequestError("Offline action not found.")
        if action.status == "APPLIED":
            return action

        previous_status = action.status
        previous_reason = action.conflict_reason
        previous_payload = action.conflict_payload

        if resolution == "DISMISS":
            outcome = ApplyOutcome(status="REJECTED", conflict_payload=previous_payload, error_message="Dismissed by user.")
        elif resolution == "SYNC_APPROVAL":
            outcome = self._sync_approval(business_id, user_id, action)
        else:
            if resolution == "OVERRIDE_PRICE" and action.action_type != "SALE_COMPLETE":
                raise OfflineRequestError("Price override is only available for sales.")
            ctx = ApplyContext(
                business_id=business_id,
                user_id=user_id,
                device_id=action.device_id,
                access=self.collaborators.permissions.resolve_user_access(user_id, business_id),
                collaborators=self.collaborators,
                allow_price_variance=resolution == "OVERRIDE_PRICE",
            )
            outcome = self._apply(action.action_type, ctx, action.payload)
            if outcome.status != "APPLIED" and outcome.conflict_payload is None:
                outcome.conflict_payload = previous_payload

        self._audit(
            business_id,
            user_id,
            "OFFLINE_CONFLICT_RESOLVE",
            resource_id=action.id,
            metadata={
                "resolution": resolution,
                "previous_status": previous_status,
                "conflict_reason": previous_reason,
                "device_id": action.device_id,
            },
        )
        return self._finalize(action, outcome, user_id)

    def _sync_approval(self, business_id: int, user_id: int, action: OfflineAction) -> ApplyOutcome:
        if action.conflict_reason != "APPROVAL_REQUIRED":
            raise OfflineRequestError("Approval sync is not applicable.")
        conflict_payload = action.conflict_payload or {}
        approval_id = conflict_payload.get("approval_id")
        if not approval_id:
            raise OfflineRequestError("Approval reference missing.")
        approval = self.collaborators.approvals.get_approval(business_id, approval_id)
        if not approval:
            raise OfflineRequestError("Approval not found.")

        if approval.status == "APPROVED":
            finalizer = APPROVAL_FINALIZERS.get(action.action_type)
            if finalizer is None:
                return ApplyOutcome(status="APPLIED", conflict_payload=conflict_payload)
            ctx = ApplyContext(
                business_id=business_id,
                user_id=user_id,
                device_id=action.device_id,
                access=self.collaborators.permissions.resolve_user_access(user_id, business_id),
                collaborators=self.collaborators,
            )
            return self._run(finalizer, ctx, action.payload, conflict_payload)

        if approval.status == "REJECTED":
            return ApplyOutcome(
                status="REJECTED",
                conflict_reason=action.conflict_reason,
                conflict_payload=conflict_payload,
                error_message="Approval rejected.",
            )
        return ApplyOutcome(
            status="CONFLICT",
            conflict_reason=action.conflict_reason,
            conflict_payload=conflict_payload,
            error_message="Approval still pending.",
        )

    # ------------------------------------------------------------------
    # read models

    def get_status(self, business_id: int, user_id: int, device_id: str) -> dict:
        subscription = self.collaborators.subscriptions.get_subscription(business_id)
        settings = self.collaborators.settings.get_settings(business_id)
        device = self.devices.get_owned_device(business_id, user_id, device_id)
        if not device:
            raise OfflineRequestError("Device not registered for this user.")

        _, pending_sales_value = self.governor.pending_sales(business_id, device_id)
        return {
            "device": device.to_dict(),
            "offline_enabled": bool(subscription and subscription.offline_enabled),
            "limits": {
                "offline_devices": subscription.limits.get("offline_devices", 0) if subscription else 0,
                "offline_limits": resolve_offline_limits(subscription.tier if subscription else None, settings).to_dict(),
            },
            "pending_count": count_pending_actions(business_id, device_id),
            "pending_sales_value_cents": pending_sales_value,
            "last_seen_at": to_utc_z(device.last_seen_at or device.created_at),
        }

    def get_risk_overview(self, business_id: int) -> dict:
        subscription = self.collaborators.subscriptions.get_subscription(business_id)
        return get_risk_overview(
            business_id,
            offline_enabled=bool(subscription and subscription.offline_enabled),
            stale_threshold_hours=current_app.config.get("OFFLINE_STALE_THRESHOLD_HOURS", DEFAULT_STALE_THRESHOLD_HOURS),
        )
