# escaperoom/game/progression.py
# -*- coding: utf-8 -*-
"""
Stage gate and answer evaluation.

A participant may attempt any stage up to their frontier. A correct answer on
the frontier stage moves the frontier to the next stage (compare-and-set, so
duplicate or concurrent correct submissions advance it once), bumps the
stage's clear counter and returns the arrival rank. Clears below the frontier
are answered with ALREADY_CLEARED and never touch the ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .catalog import (
    ChoiceConfig,
    PathConfig,
    PatternConfig,
    Stage,
    StageCatalog,
    TapConfig,
    TextConfig,
    UpDownConfig,
)
from .core import normalize_answer, now_ms, parse_number
from .errors import InvalidRequest, NotGroupChoice, OutOfRange, RegistrationRequired, UnknownStage
from .store import ParticipantState

log = logging.getLogger(__name__)

CORRECT = "correct"
INCORRECT = "incorrect"
INVALID_FORMAT = "invalidFormat"
ALREADY_CLEARED = "alreadyCleared"

HIGHER = "higher"
LOWER = "lower"

STATUS_ONLY = "status"
BLOCKED = "blocked"
FINISHED = "finished"
OK = "ok"


@dataclass(frozen=True)
class SubmitOutcome:
    status: str
    frontier: int
    hint: Optional[str] = None
    arrival_rank: Optional[int] = None
    next_stage: Optional[Stage] = None

    @property
    def finished(self) -> bool:
        return self.status == CORRECT and self.next_stage is None


@dataclass(frozen=True)
class StageView:
    status: str
    frontier: int
    stage: Optional[Stage] = None
    is_cleared: bool = False
    arrival_rank: Optional[int] = None
    finished: bool = False


@dataclass(frozen=True)
class Advance:
    moved: bool
    frontier: int
    arrival_rank: Optional[int]
    next_stage: Optional[Stage]


class ProgressionEngine:
    def __init__(self, store, catalog: StageCatalog, clock: Callable[[], int] = now_ms,
                 player_mode: bool = False):
        self.store = store
        self.catalog = catalog
        self.clock = clock
        self.player_mode = player_mode

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_frontier(self, participant_id: str) -> int:
        if not participant_id:
            return 1
        return self.store.get_or_create_participant(participant_id).frontier

    def fetch_stage(self, participant_id: str, stage_number: int) -> StageView:
        participant = self.store.get_or_create_participant(participant_id)
        frontier = participant.frontier

        if stage_number <= 0:
            return StageView(
                status=STATUS_ONLY,
                frontier=frontier,
                finished=self.catalog.lookup(frontier) is None,
            )
        if stage_number > frontier:
            return StageView(status=BLOCKED, frontier=frontier)

        stage = self.catalog.lookup(stage_number)
        if stage is None:
            return StageView(status=FINISHED, frontier=frontier, finished=True)

        return StageView(
            status=OK,
            frontier=frontier,
            stage=stage,
            is_cleared=stage_number < frontier,
            arrival_rank=self._arrival_rank(participant_id, stage_number),
        )

    def _arrival_rank(self, participant_id: str, stage_number: int) -> Optional[int]:
        # rank for arriving at a stage is the rank recorded when clearing the one before it
        prev = self.catalog.previous_stage_number(stage_number)
        if prev is None:
            return None
        return self.store.arrival_rank(participant_id, prev)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def require_registered(self, participant: ParticipantState) -> None:
        if self.player_mode and not participant.player_code:
            raise RegistrationRequired()

    def submit_answer(self, participant_id: str, stage_number: int, answer: str) -> SubmitOutcome:
        if not participant_id:
            raise InvalidRequest("participant id is required")
        participant = self.store.get_or_create_participant(participant_id)
        self.require_registered(participant)
        frontier = participant.frontier

        if stage_number > frontier:
            raise OutOfRange(currentStage=frontier)
        if stage_number < frontier:
            return SubmitOutcome(status=ALREADY_CLEARED, frontier=frontier)

        stage = self.catalog.lookup(stage_number)
        if stage is None:
            raise UnknownStage()

        verdict, hint = self.evaluate(stage, answer)
        if verdict != CORRECT:
            return SubmitOutcome(status=verdict, frontier=frontier, hint=hint)

        adv = self.advance(participant, stage_number)
        if not adv.moved:
            # a concurrent submission for the same stage got there first
            return SubmitOutcome(status=ALREADY_CLEARED, frontier=adv.frontier)
        return SubmitOutcome(
            status=CORRECT,
            frontier=adv.frontier,
            arrival_rank=adv.arrival_rank,
            next_stage=adv.next_stage,
        )

    def evaluate(self, stage: Stage, answer: str) -> Tuple[str, Optional[str]]:
        cfg = stage.config
        if isinstance(cfg, UpDownConfig):
            guess = parse_number(answer)
            if guess is None:
                return INVALID_FORMAT, None
            target = int(stage.answer)
            if guess == target:
                return CORRECT, None
            return INCORRECT, (HIGHER if guess < target else LOWER)
        if isinstance(cfg, ChoiceConfig):
            raise NotGroupChoice("Group-choice stages are answered by voting.")
        if isinstance(cfg, (TextConfig, TapConfig, PatternConfig, PathConfig)):
            if normalize_answer(answer) == normalize_answer(stage.answer):
                return CORRECT, None
            return INCORRECT, None
        raise TypeError(f"unhandled stage config {type(cfg).__name__}")

    def advance(self, participant: ParticipantState, stage_number: int) -> Advance:
        """Move the frontier past `stage_number` and record the clear, once."""
        new_frontier = self.catalog.next_stage_number(stage_number)
        # frontier, counter and rank commit together
        cleared = self.store.clear_stage(participant.id, stage_number, new_frontier, self.clock())
        rank = None
        if cleared is not None:
            frontier = max(participant.frontier, new_frontier)
            rank, first = cleared
            if first and participant.display_name:
                self._label_clear_event(participant, stage_number)
        else:
            current = self.store.get_participant(participant.id)
            frontier = current.frontier if current else new_frontier
        return Advance(
            moved=cleared is not None,
            frontier=frontier,
            arrival_rank=rank,
            next_stage=self.catalog.lookup(frontier),
        )

    def _label_clear_event(self, participant: ParticipantState, stage_number: int) -> None:
        # leaderboard name only; the frontier and the ledger are already committed
        try:
            self.store.label_clear_event(stage_number, participant.id, participant.display_name)
        except Exception as e:
            log.warning("[escape] clear event write failed stage=%s participant=%s: %s",
                        stage_number, participant.id, e)

    def reset(self, participant_id: str) -> ParticipantState:
        if not participant_id:
            raise InvalidRequest("participant id is required")
        return self.store.reset_participant(participant_id)
