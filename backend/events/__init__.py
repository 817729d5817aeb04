"""Internal event bus: blinker signals from events.catalog, mirrored to Socket.IO.

Scanner, candidate manager and deletion executor call emit_event(); the
bridge installed by init_event_system() forwards every payload to the
connected WebSocket clients under the same event name.
"""

import logging

from events.catalog import CATALOG_VERSION, EVENT_CATALOG

logger = logging.getLogger(__name__)

_bridge_installed = False


class _SocketBridge:
    """Blinker receiver forwarding one event to Socket.IO."""

    def __init__(self, event_name: str):
        self.event_name = event_name

    def __call__(self, sender, data=None, **kwargs):
        from extensions import socketio

        try:
            socketio.emit(self.event_name, data or {})
        except Exception as exc:
            logger.warning("Socket.IO relay of %s failed: %s", self.event_name, exc)


def init_event_system(app):
    """Connect the Socket.IO bridge to every catalog signal (once per process)."""
    global _bridge_installed
    if _bridge_installed:
        return
    for name, entry in EVENT_CATALOG.items():
        entry["signal"].connect(_SocketBridge(name), weak=False)
    _bridge_installed = True
    logger.info("Event bus ready: %d events (catalog v%d)", len(EVENT_CATALOG), CATALOG_VERSION)


def emit_event(event_name: str, data: dict = None):
    """Send `data` on the named signal; unknown names are logged and dropped."""
    entry = EVENT_CATALOG.get(event_name)
    if entry is None:
        logger.warning("emit_event: unknown event %r", event_name)
        return

    from flask import current_app, has_app_context

    sender = current_app._get_current_object() if has_app_context() else None
    entry["signal"].send(sender, data=data or {})


def list_events() -> dict:
    """Catalog metadata without the signal objects."""
    return {
        "version": CATALOG_VERSION,
        "events": [
            {"name": name, "label": entry["label"], "description": entry["description"],
             "payload_keys": entry["payload_keys"]}
            for name, entry in EVENT_CATALOG.items()
        ],
    }
