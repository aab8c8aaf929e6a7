# -*- coding: utf-8 -*-
"""
Escape Room - Routes (Blueprint endpoints)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, abort, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from escaperoom.extensions import db
from .errors import GameError
from .progression import (
    ALREADY_CLEARED,
    BLOCKED,
    CORRECT,
    FINISHED,
    INVALID_FORMAT,
    STATUS_ONLY,
)
from .services import get_game
from .stats import stage_leaderboard
from .voting import LOSE, PENDING

MSG_FINISHED = "You cleared every room!"
MSG_BLOCKED = "This room is still locked."
MSG_ALREADY = "You already cleared this room."
MSG_WRONG = "Not quite. Think again."
MSG_NOT_A_NUMBER = "Enter a number."


# ---------------------------------------------------------------------
# Helpers (pure functions)
# ---------------------------------------------------------------------

def _abort_json(http_status: int, message: str, **extra: Any):
    resp = jsonify({"ok": False, "message": message, **extra})
    resp.status_code = http_status
    return resp

def _bad(message: str):
    abort(_abort_json(400, message, code="invalid_request"))

def _json_body_or_400() -> Dict[str, Any]:
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        _bad("Request body must be a JSON object")
    return data

def _session_id(data: Dict[str, Any]) -> str:
    sid = str(data.get("sessionId") or "").strip()
    if not sid:
        _bad("sessionId is required")
    return sid

def _stage_number(raw: Any, default: Optional[int] = None) -> int:
    if raw in (None, "") and default is not None:
        return default
    # JSON true and 1.5 are not stage numbers
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        _bad("stage must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        _bad("stage must be an integer")

def _finished_payload(frontier: int) -> Dict[str, Any]:
    return {
        "ok": True,
        "finished": True,
        "currentStage": frontier,
        "message": MSG_FINISHED,
        "clearImageUrl": current_app.config.get("ESCAPE_CLEAR_IMAGE_URL") or "/img/clear.png",
    }


# ---------------------------------------------------------------------
# Blueprint initializer (idempotent)
# ---------------------------------------------------------------------

def init_routes(bp: Blueprint):
    """Attach all route handlers to the provided blueprint."""
    if getattr(bp, "_escape_inited", False):
        return bp
    bp._escape_inited = True

    @bp.errorhandler(GameError)
    def _game_error(e: GameError):
        resp = jsonify(e.to_payload())
        resp.status_code = e.status
        return resp

    @bp.errorhandler(SQLAlchemyError)
    def _store_error(e: SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("[escape] store error on %s: %s", request.path, e)
        return _abort_json(500, "Server error, please try again.", code="server_error")

    # API: stage fetch (stage=0 asks for status only)
    @bp.route("/api/problem", methods=["GET"])
    def api_problem():
        session_id = (request.args.get("sessionId") or "").strip()
        stage_number = _stage_number(request.args.get("stage"), default=1)
        game = get_game()

        if not session_id:
            _bad("sessionId is required")

        view = game.engine.fetch_stage(session_id, stage_number)

        if view.status == STATUS_ONLY:
            if view.finished:
                return jsonify(_finished_payload(view.frontier))
            return jsonify({"ok": True, "finished": False, "currentStage": view.frontier})

        if view.status == BLOCKED:
            return _abort_json(403, MSG_BLOCKED, code="not_unlocked", status="blocked",
                               currentStage=view.frontier)

        if view.status == FINISHED:
            return jsonify(_finished_payload(view.frontier))

        payload = view.stage.public_view(include_answer=view.is_cleared)
        payload.update({
            "ok": True,
            "status": "ok",
            "finished": False,
            "currentStage": view.frontier,
            "isCleared": view.is_cleared,
            "arrivalRank": view.arrival_rank,
        })
        return jsonify(payload)

    # API: answer submission
    @bp.route("/api/answer", methods=["POST"])
    def api_answer():
        data = _json_body_or_400()
        session_id = _session_id(data)
        stage_number = _stage_number(data.get("stage"))
        answer = data.get("answer")
        if stage_number <= 0 or not isinstance(answer, str):
            _bad("sessionId, stage and answer are required")

        out = get_game().engine.submit_answer(session_id, stage_number, answer)

        if out.status == ALREADY_CLEARED:
            return jsonify({
                "ok": True,
                "correct": True,
                "alreadyCleared": True,
                "message": MSG_ALREADY,
                "currentStage": out.frontier,
            })

        if out.status == INVALID_FORMAT:
            return jsonify({
                "ok": True,
                "correct": False,
                "invalidFormat": True,
                "message": MSG_NOT_A_NUMBER,
                "currentStage": out.frontier,
            })

        if out.status != CORRECT:
            body = {"ok": True, "correct": False, "message": MSG_WRONG, "currentStage": out.frontier}
            if out.hint:
                body["hint"] = out.hint
            return jsonify(body)

        current_app.logger.info("[escape] clear stage=%s rank=%s session=%s",
                                stage_number, out.arrival_rank, session_id)

        if out.finished:
            body = _finished_payload(out.frontier)
            body.update({"correct": True, "hasNext": False, "arrivalRank": out.arrival_rank})
            return jsonify(body)

        return jsonify({
            "ok": True,
            "correct": True,
            "finished": False,
            "hasNext": True,
            "currentStage": out.frontier,
            "nextStage": out.next_stage.stage,
            "arrivalRank": out.arrival_rank,
            "nextProblem": out.next_stage.public_view(),
        })

    # API: progress reset (ledger untouched)
    @bp.route("/api/reset", methods=["POST"])
    def api_reset():
        data = _json_body_or_400()
        p = get_game().engine.reset(_session_id(data))
        return jsonify({"ok": True, "currentStage": p.frontier, "message": "Progress has been reset."})

    # API: group-choice vote
    @bp.route("/api/choiceVote", methods=["POST"])
    def api_choice_vote():
        data = _json_body_or_400()
        session_id = _session_id(data)
        stage_number = _stage_number(data.get("stage"))
        option = str(data.get("option") or "").strip()
        if not option:
            _bad("option is required")

        receipt = get_game().votes.cast_vote(session_id, stage_number, option)
        return jsonify({
            "ok": True,
            "roundId": receipt.round_id,
            "windowMs": receipt.window_ms,
            "windowEndMs": receipt.window_end,
            "recorded": receipt.recorded,
        })

    # API: group-choice result (poll)
    @bp.route("/api/choiceResult", methods=["POST"])
    def api_choice_result():
        data = _json_body_or_400()
        result = get_game().votes.check_result(_session_id(data))

        if result.status == PENDING:
            return jsonify({"ok": True, "status": PENDING, "waitMs": result.wait_ms,
                            "currentStage": result.frontier})

        body = {
            "ok": True,
            "status": result.status,
            "currentStage": result.frontier,
            "option": result.option,
            "winningOption": result.winning_option,
            "counts": result.counts,
        }
        if result.status != LOSE:
            body["finished"] = result.finished
            body["nextStage"] = result.next_stage.stage if result.next_stage else None
        return jsonify(body)

    # API: display name
    @bp.route("/api/name", methods=["POST"])
    def api_name():
        data = _json_body_or_400()
        p = get_game().players.set_display_name(_session_id(data), str(data.get("name") or ""))
        return jsonify({"ok": True, "name": p.display_name})

    # API: roster registration
    @bp.route("/api/registerPlayer", methods=["POST"])
    def api_register_player():
        data = _json_body_or_400()
        entry = get_game().players.register_player(
            str(data.get("sessionId") or ""), str(data.get("playerCode") or "")
        )
        return jsonify({
            "ok": True,
            "playerCode": entry.code,
            "playerName": entry.name,
            "playerTeam": entry.team,
        })

    # API: per-stage leaderboard
    @bp.route("/api/leaderboard", methods=["GET"])
    def api_leaderboard():
        stage_number = _stage_number(request.args.get("stage"), default=1)
        try:
            limit = int(request.args.get("limit", "50"))
        except (TypeError, ValueError):
            limit = 50
        limit = max(1, min(200, limit))
        rows = stage_leaderboard(get_game().store, stage_number, limit=limit)
        return jsonify({"ok": True, "stage": stage_number, "rows": rows})

    return bp
