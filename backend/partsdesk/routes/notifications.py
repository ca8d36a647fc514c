# backend/partsdesk/routes/notifications.py
"""
Admin notification stream (Server-Sent Events).

Each connection subscribes to the in-process NotificationHub and receives
every event published after it connected. Idle connections get a comment
heartbeat so proxies do not close them.
"""

from flask import Blueprint, Response, current_app, stream_with_context

from ..decorators import require_auth, require_admin
from ..extensions import notifications
from ..services.notification_service import event_stream


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/stream")
@require_auth
@require_admin
def stream_notifications():
    heartbeat = current_app.config.get("NOTIFICATION_HEARTBEAT_SECONDS", 30)
    stream = event_stream(notifications, heartbeat_seconds=heartbeat)
    return Response(
        stream_with_context(stream),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
