from __future__ import annotations

import secrets

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from escaperoom.extensions import db
from escaperoom.game.errors import AdminAuthRequired, GameError, InvalidRequest
from escaperoom.game.services import get_game
from escaperoom.game.stats import admin_stats

# Admin API lives at /api/admin
admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


# ---- Auth helpers ---------------------------------------------------------
def _require_admin():
    """X-Admin-Password must match ESCAPE_ADMIN_PASSWORD; unset password locks the API."""
    expected = current_app.config.get("ESCAPE_ADMIN_PASSWORD") or ""
    supplied = request.headers.get("X-Admin-Password") or ""
    if not expected or not supplied:
        raise AdminAuthRequired()
    if not secrets.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8")):
        raise AdminAuthRequired("Wrong admin password.")


# ---- Error handling -------------------------------------------------------
@admin_bp.errorhandler(GameError)
def _admin_game_error(e: GameError):
    resp = jsonify(e.to_payload())
    resp.status_code = e.status
    return resp


@admin_bp.errorhandler(SQLAlchemyError)
def _admin_store_error(e: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.exception("[escape] admin store error on %s: %s", request.path, e)
    return jsonify({"ok": False, "code": "server_error", "message": "Server error."}), 500


# ---- Routes ---------------------------------------------------------------
@admin_bp.after_request
def _noindex(resp):
    resp.headers["X-Robots-Tag"] = "noindex, nofollow"
    return resp


@admin_bp.get("/stats")
def admin_stats_api():
    _require_admin()
    game = get_game()
    return jsonify({"ok": True, **admin_stats(game.store, game.catalog)})


@admin_bp.post("/resetStats")
def admin_reset_stats():
    _require_admin()
    removed = get_game().store.reset_all()
    current_app.logger.warning(
        "[escape] full reset by %s: %s",
        request.headers.get("X-Forwarded-For", request.remote_addr),
        removed,
    )
    return jsonify({"ok": True, "removed": removed, "message": "Everything was reset. All players start at room 1."})


@admin_bp.post("/players")
def admin_import_players():
    _require_admin()
    payload = request.get_json(silent=True)
    rows = payload.get("players") if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        raise InvalidRequest("Expected a list of players or {\"players\": [...]}")
    n = get_game().players.import_roster(rows)
    current_app.logger.info("[escape] roster import: %d players", n)
    return jsonify({"ok": True, "imported": n})
