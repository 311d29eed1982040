"""API route handlers for operating the autosave service.

    GET  /api/status                   - Settings summary, timestamps, pending confirmation
    GET  /api/backups                  - Backup files currently on disk
    POST /api/backups/clean            - Delete every backup
    GET  /api/config                   - Current settings
    PUT  /api/config                   - Update settings
    POST /api/enable                   - Turn autosaving on
    POST /api/disable                  - Turn autosaving off
    POST /api/confirmation/save-now    - Save immediately instead of waiting
    POST /api/confirmation/skip        - Skip the pending save
    POST /api/transition               - Host changed mode; save now
"""

import logging

from flask import Blueprint, jsonify, request

from autosave.core.errors import ConfigError

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

# These are set by app.py at init time via init_routes()
_service = None
_ws_handler = None


def init_routes(service, ws_handler):
    """Wire up shared application state into the route handlers."""
    global _service, _ws_handler
    _service = service
    _ws_handler = ws_handler


def _unavailable():
    return jsonify({"error": "AutoSave service not available"}), 503


# ------------------------------------------------------------------
# GET /api/status
# ------------------------------------------------------------------

@api.route("/status", methods=["GET"])
def get_status():
    if not _service:
        return _unavailable()
    status = _service.status()
    status["websocket_clients"] = _ws_handler.client_count if _ws_handler else 0
    return jsonify(status)


# ------------------------------------------------------------------
# Backups
# ------------------------------------------------------------------

@api.route("/backups", methods=["GET"])
def get_backups():
    """List backup files, newest first."""
    if not _service:
        return _unavailable()

    limit = request.args.get("limit", 100, type=int)
    backups = _service.list_backups()[:limit]
    return jsonify({
        "backups": [
            {
                "original_name": b.original_name,
                "created_at": b.created_at.isoformat(),
                "path": b.path,
            }
            for b in backups
        ],
        "total": len(backups),
        "directory": _service.backup_directory,
    })


@api.route("/backups/clean", methods=["POST"])
def clean_backups():
    """Purge the backup folder. Requires {"confirm": true}."""
    if not _service:
        return _unavailable()
    data = request.get_json(silent=True) or {}
    if data.get("confirm") is not True:
        return jsonify({
            "error": "This deletes every backup and cannot be undone; "
                     "send {\"confirm\": true} to proceed"
        }), 400

    message = _service.clean_backup_folder()
    ok = message.endswith("successfully.")
    return jsonify({"success": ok, "message": message}), 200 if ok else 500


# ------------------------------------------------------------------
# Config
# ------------------------------------------------------------------

@api.route("/config", methods=["GET"])
def get_config():
    if not _service:
        return _unavailable()
    return jsonify(_service.config.to_dict())


@api.route("/config", methods=["PUT"])
def update_config():
    """Apply setting changes; rejected values leave every setting as it was."""
    data = request.get_json(silent=True) or {}
    if not data or not isinstance(data, dict):
        return jsonify({"error": "No data provided"}), 400
    if not _service:
        return _unavailable()

    try:
        config = _service.update_config(**data)
    except ConfigError as exc:
        return jsonify({"error": str(exc), "config": _service.config.to_dict()}), 400
    except OSError as exc:
        logger.exception("Failed to persist configuration")
        return jsonify({"error": f"Failed to save: {exc}"}), 500

    return jsonify(config.to_dict())


@api.route("/enable", methods=["POST"])
def enable():
    if not _service:
        return _unavailable()
    return jsonify({"enabled": True, "info": _service.enable()})


@api.route("/disable", methods=["POST"])
def disable():
    if not _service:
        return _unavailable()
    return jsonify({"enabled": False, "info": _service.disable()})


# ------------------------------------------------------------------
# Confirmation
# ------------------------------------------------------------------

@api.route("/confirmation/save-now", methods=["POST"])
def confirmation_save_now():
    if not _service:
        return _unavailable()
    saved = _service.confirm_save_now()
    if saved is None:
        return jsonify({"error": "No save is waiting for confirmation"}), 409
    if not saved:
        last = _service.notifier.last
        return jsonify({"saved": False, "error": last.message if last else "Save failed"}), 500
    return jsonify({"saved": True, "last_save_at": _service.state.last_save_at.isoformat()})


@api.route("/confirmation/skip", methods=["POST"])
def confirmation_skip():
    if not _service:
        return _unavailable()
    skipped = _service.skip_save()
    return jsonify({"skipped": skipped})


@api.route("/transition", methods=["POST"])
def mode_transition():
    if not _service:
        return _unavailable()
    saved = _service.on_mode_transition()
    return jsonify({"saved": saved})
