"""Flask application exposing the autosave operator API.

Serves the REST API and WebSocket endpoint:

    GET  /api/status
    GET  /api/backups
    POST /api/backups/clean
    GET  /api/config
    PUT  /api/config
    POST /api/enable
    POST /api/disable
    POST /api/confirmation/save-now
    POST /api/confirmation/skip
    POST /api/transition
    WS   /ws/live
"""

import json
import logging

from flask import Flask
from flask_sock import ConnectionClosed, Sock

from autosave.dashboard.api.routes import api, init_routes
from autosave.dashboard.websocket_handler import WebSocketHandler, handle_command
from autosave.service.autosave_service import AutoSaveService
from autosave.service.bootstrap import DEFAULT_CONFIG, build_service

logger = logging.getLogger(__name__)

# Seconds a client may stay silent before the socket is closed
WS_IDLE_TIMEOUT = 60


def create_app(
    service: AutoSaveService = None,
    ws_handler: WebSocketHandler = None,
    config_path: str = None,
    project_root: str = None,
) -> Flask:
    """Application factory.

    Accepts a pre-built service (for testing or when the launcher owns
    the tick loop) or constructs one from ``config_path``.
    """
    ws_handler = ws_handler or WebSocketHandler()
    host = None
    if service is None:
        service, host = build_service(
            config_path=config_path or str(DEFAULT_CONFIG),
            project_root=project_root,
            ws_handler=ws_handler,
        )

    app = Flask(__name__)
    sock = Sock(app)

    init_routes(service=service, ws_handler=ws_handler)
    app.register_blueprint(api)

    @sock.route("/ws/live")
    def ws_live(ws):
        ws_handler.register(ws)
        try:
            while True:
                raw = ws.receive(timeout=WS_IDLE_TIMEOUT)
                if raw is None:
                    break
                ws.send(json.dumps(handle_command(service, raw)))
        except ConnectionClosed:
            logger.debug("WebSocket client went away")
        finally:
            ws_handler.unregister(ws)

    # Store references for test access
    app.autosave_service = service
    app.workspace_host = host
    app.ws_handler = ws_handler

    return app

