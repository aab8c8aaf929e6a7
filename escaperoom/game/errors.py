# escaperoom/game/errors.py
"""
Domain errors raised by the progression engine, the vote coordinator and the
player helpers. Each carries the HTTP status and a stable machine code so the
blueprint can answer with JSON without knowing the individual cases.
"""

from __future__ import annotations

from typing import Any, Dict


class GameError(Exception):
    status = 400
    code = "bad_request"
    default_message = "Invalid request."

    def __init__(self, message: str | None = None, **extra: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.extra = extra

    def to_payload(self) -> Dict[str, Any]:
        return {"ok": False, "code": self.code, "message": self.message, **self.extra}


class InvalidRequest(GameError):
    status = 400
    code = "invalid_request"


class OutOfRange(GameError):
    """Target stage is beyond the participant's frontier."""
    status = 403
    code = "not_unlocked"
    default_message = "Clear the previous stages first."


class UnknownStage(GameError):
    status = 404
    code = "unknown_stage"
    default_message = "No such stage."


class NotGroupChoice(GameError):
    status = 400
    code = "not_group_choice"
    default_message = "This stage is not a group-choice stage."


class InvalidOption(GameError):
    status = 400
    code = "invalid_option"
    default_message = "Unknown option for this stage."


class NotCurrentStage(GameError):
    status = 403
    code = "not_current_stage"
    default_message = "You can only vote on your current stage."


class VoteConflict(GameError):
    status = 409
    code = "vote_conflict"
    default_message = "You already voted differently in this round."


class NoPendingVote(GameError):
    status = 400
    code = "no_pending_vote"
    default_message = "There is no vote waiting for a result."


class InvalidName(GameError):
    status = 400
    code = "invalid_name"
    default_message = "Names are 2-12 characters: letters, digits, underscore or space."


class NameTaken(GameError):
    status = 409
    code = "name_taken"
    default_message = "That name is already in use."


class PlayerModeDisabled(GameError):
    status = 400
    code = "PLAYER_MODE_DISABLED"
    default_message = "Player registration is disabled."


class PlayerNotFound(GameError):
    status = 404
    code = "PLAYER_NOT_FOUND"
    default_message = "That player code is not on the roster."


class PlayerAlreadyUsed(GameError):
    status = 409
    code = "PLAYER_ALREADY_USED"
    default_message = "That player code is already linked to another device."


class RegistrationRequired(GameError):
    status = 403
    code = "registration_required"
    default_message = "Register your player code first."


class AdminAuthRequired(GameError):
    status = 401
    code = "unauthorized"
    default_message = "Admin password required."
