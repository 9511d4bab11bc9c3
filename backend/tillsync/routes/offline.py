# Overview: Flask API routes for offline devices, sync, and the conflict workstation.

# backend/tillsync/routes/offline.py
"""Offline API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context, require_permission
from ..services.offline_device_service import OfflineForbiddenError, OfflineRequestError
from ..services.offline_sync_service import OfflineSyncService


offline_bp = Blueprint("offline", __name__, url_prefix="/api/offline")


def _service() -> OfflineSyncService:
    return OfflineSyncService()


def _admission_error(exc: Exception):
    status = 403 if isinstance(exc, OfflineForbiddenError) else 400
    current_app.logger.warning(
        "Offline request rejected (business_id=%s user_id=%s): %s",
        g.business_id,
        g.user_id,
        exc,
    )
    return jsonify({"error": str(exc)}), status


@offline_bp.post("/devices")
@require_tenant_context
@require_permission("MANAGE_OFFLINE")
def register_device_route():
    """
    Register (or re-activate) an offline device for the calling user.

    Requires: MANAGE_OFFLINE permission
    Available to: admin, manager, cashier
    """
    try:
        data = request.get_json() or {}
        device = _service().devices.register_device(
            g.business_id,
            g.user_id,
            data.get("device_name"),
            data.get("device_id"),
        )
        # device_key is only ever returned to the registering client
        return jsonify({"device": {**device.to_dict(), "device_key": device.device_key}}), 201

    except (OfflineForbiddenError, OfflineRequestError) as e:
        return _admission_error(e)
    except Exception:
        current_app.logger.exception("Failed to register offline device")
        return jsonify({"error": "Internal server error"}), 500


@offline_bp.post("/devices/revoke")
@require_tenant_context
@require_permission("MANAGE_OFFLINE")
def revoke_device_route():
    """
    Revoke an offline device.

    Requires: MANAGE_OFFLINE permission
    """
    try:
        data = request.get_json() or {}
        device_id = data.get("device_id")
        if not device_id:
            return jsonify({"error": "device_id required"}), 400

        device = _service().devices.revoke_device(g.business_id, g.user_id, device_id)
        return jsonify({"device": device.to_dict()}), 200

    except (OfflineForbiddenError, OfflineRequestError) as e:
        return _admission_error(e)
    except Exception:
        current_app.logger.exception("Failed to revoke offline device")
        return jsonify({"error": "Internal server error"}), 500


@offline_bp.get("/status")
@require_tenant_context
@require_permission("VIEW_OFFLINE")
def get_status_route():
    """
    Device status, limits and pending queue.

    Query params: device_id (required)
    Requires: VIEW_OFFLINE permission
    """
    try:
        device_id = request.args.get("device_id")
        if not device_id:
            return jsonify({"error": "device_id required"}), 400

        status = _service().get_status(g.business_id, g.user_id, device_id)
        return jsonify(status), 200

    except (OfflineForbiddenError, OfflineRequestError) as e:
        return _admission_error(e)
    except Exception:
        current_app.logger.exception("Failed to load offline status")
        return jsonify({"error": "Internal server error"}), 500


@offline_bp.post("/status")
@require_tenant_context
@require_permission("MANAGE_OFFLINE")
def record_status_route():
    """
    Device heartbeat: ONLINE, or OFFLINE with an optional `since` timestamp.

    Requires: MANAGE_OFFLINE permission
    """
    try:
        data = request.get_json() or {}
        device_id = data.get("device_id")
        if not device_id:
            return jsonify({"error": "device_id required"}), 400

        device = _service().devices.record_status(
            g.business_id,
            g.user_id,
            device_id,
            data.get("status"),
            data.get("since"),
        )
        return jsonify({"device": device.to_dict()}), 200

    except (OfflineForbiddenError, OfflineRequestError) as e:
        return _admission_error(e)
    except Exception:
        current_app.logger.exception("Failed to record offline status")
        return jsonify({"error": "Internal server error"}), 500


@offline_bp.get("/risk")
@require_tenant_context
@require_permission("VIEW_OFFLINE")
def risk_route():
    """
    Offline risk overview for the business.

    Requires: VIEW_OFFLINE permission
    """
    try:
        return jsonify(_service().get_risk_overview(g.business_id)), 200
    except Exception:
        current_app.logger.exception("Failed to load offline risk overview")
        return jsonify({"error": "Internal server error"}), 500


@offline_bp.get("/conflicts")
@require_tenant_context
@require_permission("VIEW_OFFLINE")
def list_conflicts_route():
    """
    CONFLICT and REJECTED actions for a device, newest first.

    Query params: device_id (required), limit, cursor
    Requires: VIEW_OFFLINE permission
    """
    try:
        device_id = request.args.get("device_id")
        if not device_id:
            return jsonify({"error": "device_id required"}), 400

        page = _service().list_conflicts(
            g.business_id,
            device_id,
            limit=request.args.get("limit"),
            cursor=request.args.get("cursor"),
        )
        return jsonify(page), 200

    except (OfflineForbiddenError, OfflineRequestError) as e:
        return _admission_error(e)
    except Exception:
        current_app.logger.exception("Failed to list offline conflicts")
        return jsonify({"error": "Internal server error"}), 500


@offline_bp.post("/conflicts/resolve")
@require_tenant_context
@require_permission("MANAGE_OFFLINE")
def resolve_conflict_route():
    """
    Apply an operator resolution (DISMISS, RETRY, OVERRIDE_PRICE, SYNC_APPROVAL).

    Requires: MANAGE_OFFLINE permission
    """
    try:
        data = request.get_json() or {}
        action_id = data.get("action_id")
        resolution = data.get("resolution")
        if not action_id or not resolution:
            return jsonify({"error": "action_id and resolution required"}), 400

        try:
            action_id = int(action_id)
        except (TypeError, ValueError):
            return jsonify({"error": "action_id must be an integer"}), 400

        action = _service().resolve_conflict(g.business_id, g.user_id, action_id, resolution)
        return jsonify({"action": action.to_dict()}), 200

    except (OfflineForbiddenError, OfflineRequestError) as e:
        return _admission_error(e)
    except Exception:
        current_app.logger.exception("Failed to resolve offline conflict")
        return jsonify({"error": "Internal server error"}), 500


@offline_bp.post("/sync")
@require_tenant_context
@require_permission("MANAGE_OFFLINE")
def sync_route():
    """
    Submit a batch of queued offline actions.

    Body: {device_id, actions: [...]}
    Returns per-action results and a fresh offline cache.
    Requires: MANAGE_OFFLINE permission
    """
    try:
        data = request.get_json() or {}
        device_id = data.get("device_id")
        if not device_id:
            return jsonify({"error": "device_id required"}), 400

        response = _service().sync_actions(g.business_id, g.user_id, device_id, data.get("actions"))
        return jsonify(response), 200

    except (OfflineForbiddenError, OfflineRequestError) as e:
        return _admission_error(e)
    except Exception:
        current_app.logger.exception("Offline sync failed")
        return jsonify({"error": "Internal server error"}), 500
