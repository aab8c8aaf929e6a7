# escaperoom/game/models.py
# -*- coding: utf-8 -*-

from __future__ import annotations

from datetime import datetime, timezone

from escaperoom.extensions import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Participant(db.Model):
    __tablename__ = "escape_participants"

    id = db.Column(db.String(128), primary_key=True)  # client-generated session id
    frontier = db.Column(db.Integer, nullable=False, default=1)
    display_name = db.Column(db.String(40), nullable=True, index=True)
    player_code = db.Column(db.String(64), nullable=True)

    # pending group-choice vote (all four set, or all NULL)
    pending_stage = db.Column(db.Integer, nullable=True)
    pending_group = db.Column(db.String(64), nullable=True)
    pending_round = db.Column(db.BigInteger, nullable=True)
    pending_option = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    reset_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Participant {self.id} frontier={self.frontier}>"


class StageClear(db.Model):
    """Cumulative first-clear counter, one row per stage."""
    __tablename__ = "escape_stage_clears"

    stage = db.Column(db.Integer, primary_key=True, autoincrement=False)
    clear_count = db.Column(db.Integer, nullable=False, default=0)


class ClearEvent(db.Model):
    __tablename__ = "escape_clear_events"
    __table_args__ = (db.UniqueConstraint("stage", "participant_id", name="uq_clear_event_stage_participant"),)

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    stage = db.Column(db.Integer, nullable=False, index=True)
    participant_id = db.Column(db.String(128), nullable=False, index=True)
    display_name = db.Column(db.String(40), nullable=True)
    rank = db.Column(db.Integer, nullable=False)
    cleared_ms = db.Column(db.BigInteger, nullable=False)


class VoteRound(db.Model):
    __tablename__ = "escape_vote_rounds"
    __table_args__ = (db.UniqueConstraint("group_id", "stage", "round_id", name="uq_vote_round_key"),)

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    group_id = db.Column(db.String(64), nullable=False)
    stage = db.Column(db.Integer, nullable=False)
    round_id = db.Column(db.BigInteger, nullable=False)  # window start, epoch ms
    window_ms = db.Column(db.Integer, nullable=False)
    resolved = db.Column(db.Boolean, nullable=False, default=False)
    outcome = db.Column(db.String(20), nullable=True)  # winner|draw|eliminated
    winning_option = db.Column(db.String(64), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)


class VoteTally(db.Model):
    __tablename__ = "escape_vote_tallies"
    __table_args__ = (
        db.UniqueConstraint("group_id", "stage", "round_id", "option", name="uq_vote_tally_key"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    group_id = db.Column(db.String(64), nullable=False)
    stage = db.Column(db.Integer, nullable=False)
    round_id = db.Column(db.BigInteger, nullable=False)
    option = db.Column(db.String(64), nullable=False)
    count = db.Column(db.Integer, nullable=False, default=0)


class RosterPlayer(db.Model):
    """Pre-registered player code; linked to at most one participant."""
    __tablename__ = "escape_players"

    code = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(40), nullable=False)
    team = db.Column(db.String(40), nullable=True)
    participant_id = db.Column(db.String(128), nullable=True, index=True)
    registered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=True)
