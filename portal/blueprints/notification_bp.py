"""
Notification Blueprint — the current user's in-app notifications.

  GET    /api/v1/notifications                 — list (?unread_only=true), with unread_count
  GET    /api/v1/notifications/unread-count
  POST   /api/v1/notifications/<id>/read
  POST   /api/v1/notifications/read-all
  DELETE /api/v1/notifications/<id>
"""

from flask import Blueprint, g, jsonify, request

from portal.middleware.permission_required import login_required
from portal.services.notification_service import NotificationService

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1/notifications")


@notification_bp.route("", methods=["GET"])
@login_required
def list_notifications():
    result = NotificationService.list_for_user(
        g.current_user.id,
        unread_only=request.args.get("unread_only", False),
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 20),
    )
    return jsonify(result)


@notification_bp.route("/unread-count", methods=["GET"])
@login_required
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.current_user.id)})


@notification_bp.route("/<int:nid>/read", methods=["POST", "PATCH"])
@login_required
def mark_read(nid):
    notif = NotificationService.mark_read(nid, g.current_user.id)
    return jsonify(notif.to_dict())


@notification_bp.route("/read-all", methods=["POST", "PATCH"])
@login_required
def mark_all_read():
    count = NotificationService.mark_all_read(g.current_user.id)
    return jsonify({"updated": count})


@notification_bp.route("/<int:nid>", methods=["DELETE"])
@login_required
def delete_notification(nid):
    NotificationService.delete(nid, g.current_user.id)
    return jsonify({"deleted": True, "id": nid})
