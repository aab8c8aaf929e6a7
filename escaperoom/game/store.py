# escaperoom/game/store.py
# -*- coding: utf-8 -*-
"""
Durable state behind the game: participants, the arrival ledger, vote rounds
and the player roster.

Two interchangeable implementations share one contract:

- MemoryStore: process-local, every method runs under one lock. Used by the
  engine tests and handy for local experiments.
- SqlStore: Flask-SQLAlchemy tables. Counters are bumped with
  `UPDATE ... SET n = n + 1` inside a transaction, rows are created with
  `INSERT ... ON CONFLICT DO NOTHING`, and frontier/round transitions are
  compare-and-set `UPDATE ... WHERE` statements.

Neither implementation retries; errors propagate to the caller.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import delete, func, select, update

from .errors import VoteConflict
from .models import ClearEvent, Participant, RosterPlayer, StageClear, VoteRound, VoteTally

WINNER = "winner"
DRAW = "draw"
ELIMINATED = "eliminated"


@dataclass(frozen=True)
class PendingVote:
    stage: int
    group_id: str
    round_id: int
    option: str

    def same_round(self, other: "PendingVote") -> bool:
        return (self.stage, self.group_id, self.round_id) == (other.stage, other.group_id, other.round_id)


@dataclass(frozen=True)
class ParticipantState:
    id: str
    frontier: int = 1
    display_name: Optional[str] = None
    player_code: Optional[str] = None
    pending: Optional[PendingVote] = None

    @property
    def label(self) -> str:
        return self.display_name or self.player_code or self.id[:8]


@dataclass(frozen=True)
class Resolution:
    outcome: str  # WINNER | DRAW | ELIMINATED
    winning_option: Optional[str] = None


@dataclass(frozen=True)
class RosterEntry:
    code: str
    name: str
    team: Optional[str] = None
    participant_id: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------------------------
# In-memory store
# --------------------------------------------------------------------

class MemoryStore:
    def __init__(self):
        self._lock = threading.Lock()
        self.participants: Dict[str, ParticipantState] = {}
        self.clear_counts: Dict[int, int] = {}
        # events[stage] = [{participant_id, display_name, rank, cleared_ms}, ...]
        self.events: Dict[int, List[Dict[str, Any]]] = {}
        # rounds[(group_id, stage, round_id)] = {window_ms, counts, resolution}
        self.rounds: Dict[Tuple[str, int, int], Dict[str, Any]] = {}
        self.roster: Dict[str, RosterEntry] = {}

    # participants

    def get_participant(self, participant_id: str) -> Optional[ParticipantState]:
        with self._lock:
            return self.participants.get(participant_id)

    def get_or_create_participant(self, participant_id: str) -> ParticipantState:
        with self._lock:
            p = self.participants.get(participant_id)
            if p is None:
                p = ParticipantState(id=participant_id)
                self.participants[participant_id] = p
            return p

    def reset_participant(self, participant_id: str) -> ParticipantState:
        with self._lock:
            p = self.participants.get(participant_id) or ParticipantState(id=participant_id)
            p = replace(p, frontier=1, pending=None)
            self.participants[participant_id] = p
            return p

    def name_holder(self, name: str) -> Optional[str]:
        want = name.lower()
        with self._lock:
            for p in self.participants.values():
                if p.display_name and p.display_name.lower() == want:
                    return p.id
        return None

    def set_display_name(self, participant_id: str, name: str) -> None:
        with self._lock:
            p = self.participants.get(participant_id) or ParticipantState(id=participant_id)
            self.participants[participant_id] = replace(p, display_name=name)

    def all_participants(self) -> List[ParticipantState]:
        with self._lock:
            return list(self.participants.values())

    # arrival ledger

    def clear_stage(self, participant_id: str, stage: int, new_frontier: int,
                    cleared_ms: int) -> Optional[Tuple[int, bool]]:
        with self._lock:
            p = self.participants.get(participant_id)
            if p is None or p.frontier > stage:
                return None
            cleared = self._record_clear(stage, participant_id, cleared_ms)
            self.participants[participant_id] = replace(p, frontier=max(p.frontier, new_frontier))
            return cleared

    def _record_clear(self, stage: int, participant_id: str, cleared_ms: int) -> Tuple[int, bool]:
        # caller holds the lock
        rows = self.events.setdefault(stage, [])
        for r in rows:
            if r["participant_id"] == participant_id:
                return r["rank"], False
        n = self.clear_counts.get(stage, 0) + 1
        self.clear_counts[stage] = n
        rows.append({
            "participant_id": participant_id,
            "display_name": None,
            "rank": n,
            "cleared_ms": cleared_ms,
        })
        return n, True

    def label_clear_event(self, stage: int, participant_id: str, display_name: Optional[str]) -> None:
        with self._lock:
            for r in self.events.get(stage) or []:
                if r["participant_id"] == participant_id:
                    r["display_name"] = display_name

    def arrival_rank(self, participant_id: str, stage: int) -> Optional[int]:
        with self._lock:
            for r in self.events.get(stage) or []:
                if r["participant_id"] == participant_id:
                    return r["rank"]
        return None

    def clear_events(self, stage: int, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in (self.events.get(stage) or [])[:limit]]

    def stage_counts(self) -> Dict[int, int]:
        with self._lock:
            return dict(self.clear_counts)

    # vote rounds

    def cast_vote(self, participant_id: str, vote: PendingVote, window_ms: int) -> bool:
        with self._lock:
            p = self.participants.get(participant_id) or ParticipantState(id=participant_id)
            if p.pending == vote:
                return False
            if p.pending is not None and p.pending.same_round(vote):
                raise VoteConflict()
            key = (vote.group_id, vote.stage, vote.round_id)
            rnd = self.rounds.setdefault(key, {"window_ms": window_ms, "counts": {}, "resolution": None})
            rnd["counts"][vote.option] = rnd["counts"].get(vote.option, 0) + 1
            self.participants[participant_id] = replace(p, pending=vote)
            return True

    def round_counts(self, group_id: str, stage: int, round_id: int) -> Dict[str, int]:
        with self._lock:
            rnd = self.rounds.get((group_id, stage, round_id))
            return dict(rnd["counts"]) if rnd else {}

    def get_resolution(self, group_id: str, stage: int, round_id: int) -> Optional[Resolution]:
        with self._lock:
            rnd = self.rounds.get((group_id, stage, round_id))
            return rnd["resolution"] if rnd else None

    def resolve_round(self, group_id: str, stage: int, round_id: int, window_ms: int,
                      resolution: Resolution) -> Resolution:
        with self._lock:
            rnd = self.rounds.setdefault((group_id, stage, round_id),
                                         {"window_ms": window_ms, "counts": {}, "resolution": None})
            if rnd["resolution"] is None:
                rnd["resolution"] = resolution
            return rnd["resolution"]

    def clear_pending_vote(self, participant_id: str, vote: PendingVote) -> bool:
        with self._lock:
            p = self.participants.get(participant_id)
            if p is None or p.pending != vote:
                return False
            self.participants[participant_id] = replace(p, pending=None)
            return True

    # roster

    def get_roster_player(self, code: str) -> Optional[RosterEntry]:
        with self._lock:
            return self.roster.get(code)

    def claim_roster_player(self, code: str, participant_id: str) -> bool:
        with self._lock:
            entry = self.roster.get(code)
            if entry is None or entry.participant_id not in (None, participant_id):
                return False
            self.roster[code] = replace(entry, participant_id=participant_id)
            p = self.participants.get(participant_id) or ParticipantState(id=participant_id)
            self.participants[participant_id] = replace(p, player_code=code, display_name=entry.name)
            return True

    def upsert_roster(self, entries: Iterable[RosterEntry]) -> int:
        n = 0
        with self._lock:
            for e in entries:
                old = self.roster.get(e.code)
                self.roster[e.code] = replace(e, participant_id=old.participant_id if old else None)
                n += 1
        return n

    # admin

    def reset_all(self) -> Dict[str, int]:
        with self._lock:
            out = {
                "participants": len(self.participants),
                "rounds": len(self.rounds),
                "stages": len(self.clear_counts),
            }
            self.participants.clear()
            self.clear_counts.clear()
            self.events.clear()
            self.rounds.clear()
            for code, e in list(self.roster.items()):
                self.roster[code] = replace(e, participant_id=None)
            return out


# --------------------------------------------------------------------
# SQL store (Flask-SQLAlchemy)
# --------------------------------------------------------------------

def _pending_of(row: Participant) -> Optional[PendingVote]:
    if row.pending_stage is None or row.pending_round is None:
        return None
    return PendingVote(
        stage=int(row.pending_stage),
        group_id=row.pending_group or "",
        round_id=int(row.pending_round),
        option=row.pending_option or "",
    )


def _state_of(row: Participant) -> ParticipantState:
    return ParticipantState(
        id=row.id,
        frontier=int(row.frontier or 1),
        display_name=row.display_name,
        player_code=row.player_code,
        pending=_pending_of(row),
    )


class SqlStore:
    def __init__(self, db):
        self.db = db

    @contextmanager
    def _tx(self) -> Iterator[Any]:
        session = self.db.session
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise

    def _insert_ignore(self, table, **values) -> None:
        """INSERT that silently does nothing when the unique key already exists."""
        dialect = self.db.engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            from sqlalchemy.exc import IntegrityError
            from sqlalchemy import insert as generic_insert
            try:
                with self.db.session.begin_nested():
                    self.db.session.execute(generic_insert(table).values(**values))
            except IntegrityError:
                pass
            return
        self.db.session.execute(insert(table).values(**values).on_conflict_do_nothing())

    @staticmethod
    def _round_key(model, group_id: str, stage: int, round_id: int):
        return (model.group_id == group_id, model.stage == stage, model.round_id == round_id)

    # participants

    def get_participant(self, participant_id: str) -> Optional[ParticipantState]:
        row = self.db.session.get(Participant, participant_id)
        return _state_of(row) if row else None

    def get_or_create_participant(self, participant_id: str) -> ParticipantState:
        with self._tx() as s:
            self._insert_ignore(Participant.__table__, id=participant_id, frontier=1, created_at=_utcnow())
        row = s.execute(select(Participant).where(Participant.id == participant_id)).scalar_one()
        s.refresh(row)
        return _state_of(row)

    def reset_participant(self, participant_id: str) -> ParticipantState:
        with self._tx() as s:
            self._insert_ignore(Participant.__table__, id=participant_id, frontier=1, created_at=_utcnow())
            s.execute(
                update(Participant)
                .where(Participant.id == participant_id)
                .values(frontier=1, pending_stage=None, pending_group=None, pending_round=None,
                        pending_option=None, reset_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
        return self.get_or_create_participant(participant_id)

    def name_holder(self, name: str) -> Optional[str]:
        return self.db.session.execute(
            select(Participant.id).where(func.lower(Participant.display_name) == name.lower()).limit(1)
        ).scalar()

    def set_display_name(self, participant_id: str, name: str) -> None:
        with self._tx() as s:
            self._insert_ignore(Participant.__table__, id=participant_id, frontier=1, created_at=_utcnow())
            s.execute(
                update(Participant)
                .where(Participant.id == participant_id)
                .values(display_name=name, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )

    def all_participants(self) -> List[ParticipantState]:
        rows = self.db.session.execute(select(Participant)).scalars().all()
        return [_state_of(r) for r in rows]

    # arrival ledger

    def clear_stage(self, participant_id: str, stage: int, new_frontier: int,
                    cleared_ms: int) -> Optional[Tuple[int, bool]]:
        """
        Move the frontier past `stage` and count the clear in one transaction.

        Returns (rank, first), or None when the frontier was already past the
        stage. A participant clearing a stage again after a reset gets the
        rank recorded the first time and the counter is left alone.
        """
        with self._tx() as s:
            res = s.execute(
                update(Participant)
                .where(Participant.id == participant_id, Participant.frontier <= stage)
                .values(frontier=new_frontier, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                return None
            cleared = self._record_clear(s, stage, participant_id, cleared_ms)
        return cleared

    def _record_clear(self, s, stage: int, participant_id: str, cleared_ms: int) -> Tuple[int, bool]:
        self._insert_ignore(StageClear.__table__, stage=stage, clear_count=0)
        # row lock on the stage counter serializes clears of the same stage
        s.execute(
            select(StageClear.stage).where(StageClear.stage == stage).with_for_update()
        ).scalar_one()
        existing = s.execute(
            select(ClearEvent.rank)
            .where(ClearEvent.stage == stage, ClearEvent.participant_id == participant_id)
        ).scalar()
        if existing is not None:
            return int(existing), False
        s.execute(
            update(StageClear)
            .where(StageClear.stage == stage)
            .values(clear_count=StageClear.clear_count + 1)
            .execution_options(synchronize_session=False)
        )
        rank = int(s.execute(select(StageClear.clear_count).where(StageClear.stage == stage)).scalar_one())
        s.execute(
            ClearEvent.__table__.insert().values(
                stage=stage, participant_id=participant_id, rank=rank, cleared_ms=cleared_ms,
            )
        )
        return rank, True

    def label_clear_event(self, stage: int, participant_id: str, display_name: Optional[str]) -> None:
        with self._tx() as s:
            s.execute(
                update(ClearEvent)
                .where(ClearEvent.stage == stage, ClearEvent.participant_id == participant_id)
                .values(display_name=display_name)
                .execution_options(synchronize_session=False)
            )

    def arrival_rank(self, participant_id: str, stage: int) -> Optional[int]:
        return self.db.session.execute(
            select(ClearEvent.rank).where(ClearEvent.stage == stage, ClearEvent.participant_id == participant_id)
        ).scalar()

    def clear_events(self, stage: int, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self.db.session.execute(
            select(ClearEvent).where(ClearEvent.stage == stage).order_by(ClearEvent.rank.asc()).limit(limit)
        ).scalars().all()
        return [{
            "participant_id": r.participant_id,
            "display_name": r.display_name,
            "rank": r.rank,
            "cleared_ms": r.cleared_ms,
        } for r in rows]

    def stage_counts(self) -> Dict[int, int]:
        rows = self.db.session.execute(select(StageClear.stage, StageClear.clear_count)).all()
        return {int(stage): int(n) for stage, n in rows}

    # vote rounds

    def cast_vote(self, participant_id: str, vote: PendingVote, window_ms: int) -> bool:
        with self._tx() as s:
            self._insert_ignore(Participant.__table__, id=participant_id, frontier=1, created_at=_utcnow())
            row = s.execute(
                select(Participant).where(Participant.id == participant_id).with_for_update()
            ).scalar_one()
            s.refresh(row)
            current = _pending_of(row)
            if current == vote:
                return False
            if current is not None and current.same_round(vote):
                raise VoteConflict()

            self._insert_ignore(
                VoteRound.__table__,
                group_id=vote.group_id, stage=vote.stage, round_id=vote.round_id,
                window_ms=window_ms, resolved=False,
            )
            self._insert_ignore(
                VoteTally.__table__,
                group_id=vote.group_id, stage=vote.stage, round_id=vote.round_id,
                option=vote.option, count=0,
            )
            s.execute(
                update(VoteTally)
                .where(*self._round_key(VoteTally, vote.group_id, vote.stage, vote.round_id),
                       VoteTally.option == vote.option)
                .values(count=VoteTally.count + 1)
                .execution_options(synchronize_session=False)
            )
            row.pending_stage = vote.stage
            row.pending_group = vote.group_id
            row.pending_round = vote.round_id
            row.pending_option = vote.option
        return True

    def round_counts(self, group_id: str, stage: int, round_id: int) -> Dict[str, int]:
        rows = self.db.session.execute(
            select(VoteTally.option, VoteTally.count).where(*self._round_key(VoteTally, group_id, stage, round_id))
        ).all()
        return {opt: int(n) for opt, n in rows}

    def get_resolution(self, group_id: str, stage: int, round_id: int) -> Optional[Resolution]:
        row = self.db.session.execute(
            select(VoteRound.outcome, VoteRound.winning_option)
            .where(*self._round_key(VoteRound, group_id, stage, round_id), VoteRound.resolved.is_(True))
        ).first()
        return Resolution(row.outcome, row.winning_option) if row else None

    def resolve_round(self, group_id: str, stage: int, round_id: int, window_ms: int,
                      resolution: Resolution) -> Resolution:
        with self._tx() as s:
            self._insert_ignore(
                VoteRound.__table__,
                group_id=group_id, stage=stage, round_id=round_id, window_ms=window_ms, resolved=False,
            )
            s.execute(
                update(VoteRound)
                .where(*self._round_key(VoteRound, group_id, stage, round_id), VoteRound.resolved.is_(False))
                .values(resolved=True, outcome=resolution.outcome,
                        winning_option=resolution.winning_option, resolved_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            row = s.execute(
                select(VoteRound.outcome, VoteRound.winning_option)
                .where(*self._round_key(VoteRound, group_id, stage, round_id))
            ).one()
            stored = Resolution(row.outcome, row.winning_option)
        return stored

    def clear_pending_vote(self, participant_id: str, vote: PendingVote) -> bool:
        with self._tx() as s:
            res = s.execute(
                update(Participant)
                .where(
                    Participant.id == participant_id,
                    Participant.pending_stage == vote.stage,
                    Participant.pending_group == vote.group_id,
                    Participant.pending_round == vote.round_id,
                    Participant.pending_option == vote.option,
                )
                .values(pending_stage=None, pending_group=None, pending_round=None, pending_option=None)
                .execution_options(synchronize_session=False)
            )
            cleared = res.rowcount == 1
        return cleared

    # roster

    def get_roster_player(self, code: str) -> Optional[RosterEntry]:
        row = self.db.session.get(RosterPlayer, code)
        if not row:
            return None
        return RosterEntry(code=row.code, name=row.name, team=row.team, participant_id=row.participant_id)

    def claim_roster_player(self, code: str, participant_id: str) -> bool:
        now = _utcnow()
        with self._tx() as s:
            res = s.execute(
                update(RosterPlayer)
                .where(
                    RosterPlayer.code == code,
                    (RosterPlayer.participant_id.is_(None)) | (RosterPlayer.participant_id == participant_id),
                )
                .values(participant_id=participant_id,
                        registered_at=func.coalesce(RosterPlayer.registered_at, now),
                        last_seen_at=now)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                return False
            name = s.execute(select(RosterPlayer.name).where(RosterPlayer.code == code)).scalar_one()
            self._insert_ignore(Participant.__table__, id=participant_id, frontier=1, created_at=now)
            s.execute(
                update(Participant)
                .where(Participant.id == participant_id)
                .values(player_code=code, display_name=name, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        return True

    def upsert_roster(self, entries: Iterable[RosterEntry]) -> int:
        n = 0
        with self._tx() as s:
            for e in entries:
                row = s.get(RosterPlayer, e.code)
                if row is None:
                    s.add(RosterPlayer(code=e.code, name=e.name, team=e.team))
                else:
                    row.name = e.name
                    row.team = e.team
                n += 1
        return n

    # admin

    def reset_all(self) -> Dict[str, int]:
        with self._tx() as s:
            out = {
                "participants": s.execute(delete(Participant)).rowcount,
                "rounds": s.execute(delete(VoteRound)).rowcount,
                "stages": s.execute(delete(StageClear)).rowcount,
            }
            s.execute(delete(VoteTally))
            s.execute(delete(ClearEvent))
            s.execute(
                update(RosterPlayer).values(participant_id=None)
                .execution_options(synchronize_session=False)
            )
        return out
