"""Live autosave updates over /ws/live.

Every service event (``saved``, ``backup``, ``pruned``, ``cleaned``,
``config_updated``, ``confirmation_started``, ``confirmation_closed``)
and every status line is pushed to the connected clients as::

    {"type": "<event>", "data": {...}}

The latest status line and the latest confirmation event are replayed to
a client when it connects, so an operator opening the page in the middle
of a countdown can still answer it. Clients answer with a command::

    {"command": "save-now"}   or   {"command": "skip"}   or   {"command": "ping"}
"""

import json
import logging
import threading

logger = logging.getLogger(__name__)

COMMAND_SAVE_NOW = "save-now"
COMMAND_SKIP = "skip"
COMMAND_PING = "ping"


def _encode(event_type: str, data: dict) -> str:
    return json.dumps({"type": event_type, "data": data}, default=str)


def _replay_slot(event_type: str) -> str | None:
    if event_type == "status":
        return "status"
    if event_type.startswith("confirmation_"):
        return "confirmation"
    return None


class WebSocketHandler:
    """Connected /ws/live clients plus the messages replayed to newcomers."""

    def __init__(self):
        self._clients: set = set()
        self._replay: dict[str, str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _send(ws, message: str) -> bool:
        try:
            ws.send(message)
        except Exception:
            logger.debug("WebSocket send failed", exc_info=True)
            return False
        return True

    def register(self, ws):
        with self._lock:
            self._clients.add(ws)
            pending = list(self._replay.values())
            count = len(self._clients)
        logger.debug("WebSocket client connected (%d total)", count)
        for message in pending:
            if not self._send(ws, message):
                self.unregister(ws)
                return

    def unregister(self, ws):
        with self._lock:
            self._clients.discard(ws)
            count = len(self._clients)
        logger.debug("WebSocket client disconnected (%d remaining)", count)

    def broadcast(self, event_type: str, data: dict):
        """Push an event to every client; clients that fail are dropped."""
        message = _encode(event_type, data)
        slot = _replay_slot(event_type)
        with self._lock:
            if slot is not None:
                self._replay[slot] = message
            targets = list(self._clients)

        dead = [ws for ws in targets if not self._send(ws, message)]
        if dead:
            with self._lock:
                self._clients.difference_update(dead)
            logger.debug("Dropped %d dead WebSocket client(s)", len(dead))

    def status_listener(self, status):
        """Adapter for StatusNotifier.listener."""
        self.broadcast("status", {
            "level": status.level,
            "message": status.message,
            "timestamp": status.timestamp,
        })

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)


def handle_command(service, raw: str) -> dict:
    """Apply a client command to ``service`` and build the reply message."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return {"type": "error", "data": {"error": "Invalid JSON"}}
    command = payload.get("command") if isinstance(payload, dict) else None

    if command == COMMAND_PING:
        return {"type": "pong", "data": {}}
    if command == COMMAND_SAVE_NOW:
        return {"type": "reply", "data": {"command": command,
                                          "ok": service.confirm_save_now() is True}}
    if command == COMMAND_SKIP:
        return {"type": "reply", "data": {"command": command,
                                          "ok": service.skip_save()}}
    return {"type": "error", "data": {"error": f"Unknown command: {command!r}"}}
