# escaperoom/game/voting.py
# -*- coding: utf-8 -*-
"""
Group-choice rounds.

Votes are bucketed into clock-aligned windows: the round id is the window
start, floor(now / window) * window, so every process agrees on the round
without talking to the others. Nobody tallies in the background. After the
window closes, the first participant to poll resolves the round from the
frozen counts and stores the outcome; every later poll reuses that stored
outcome.

Per participant and stage:

    NOT_VOTED -> PENDING -> WIN | DRAW   (frontier advances)
                         -> LOSE         (pending cleared, may vote again)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .catalog import MINORITY, ChoiceConfig, Stage, StageCatalog
from .core import now_ms, window_start
from .errors import InvalidOption, InvalidRequest, NoPendingVote, NotCurrentStage, NotGroupChoice, UnknownStage
from .progression import ProgressionEngine
from .store import DRAW as DRAW_OUTCOME
from .store import ELIMINATED, WINNER, PendingVote, Resolution

log = logging.getLogger(__name__)

PENDING = "PENDING"
WIN = "WIN"
LOSE = "LOSE"
DRAW = "DRAW"


@dataclass(frozen=True)
class VoteReceipt:
    round_id: int
    window_ms: int
    recorded: bool

    @property
    def window_end(self) -> int:
        return self.round_id + self.window_ms


@dataclass(frozen=True)
class VoteResult:
    status: str
    frontier: int
    wait_ms: int = 0
    option: Optional[str] = None
    winning_option: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=dict)
    next_stage: Optional[Stage] = None

    @property
    def finished(self) -> bool:
        return self.status in (WIN, DRAW) and self.next_stage is None


def resolve_counts(counts: Dict[str, int], options: List[str], mode: str = MINORITY) -> Resolution:
    """
    Decide a closed round from its counts.

    Options missing from `counts` count as zero. No votes at all is a draw.
    When every vote went to a single option, that option is the majority and
    all of its voters are eliminated. Otherwise the option holding the minimum
    (or, in majority mode, the maximum) count wins if it holds it alone; a
    shared target, or a winner with zero votes, is a draw.
    """
    tally = {o: int(counts.get(o, 0) or 0) for o in options}
    if sum(tally.values()) == 0:
        return Resolution(DRAW_OUTCOME)

    voted = [o for o, n in tally.items() if n > 0]
    if len(voted) == 1:
        return Resolution(ELIMINATED)

    target = min(tally.values()) if mode == MINORITY else max(tally.values())
    holders = [o for o, n in tally.items() if n == target]
    if len(holders) != 1 or tally[holders[0]] == 0:
        return Resolution(DRAW_OUTCOME)
    return Resolution(WINNER, holders[0])


class VoteCoordinator:
    def __init__(self, store, catalog: StageCatalog, engine: ProgressionEngine,
                 clock: Callable[[], int] = now_ms):
        self.store = store
        self.catalog = catalog
        self.engine = engine
        self.clock = clock

    def _choice_stage(self, stage_number: int) -> Stage:
        stage = self.catalog.lookup(stage_number)
        if stage is None:
            raise UnknownStage()
        if not isinstance(stage.config, ChoiceConfig):
            raise NotGroupChoice()
        return stage

    def cast_vote(self, participant_id: str, stage_number: int, option: str) -> VoteReceipt:
        if not participant_id:
            raise InvalidRequest("participant id is required")
        participant = self.store.get_or_create_participant(participant_id)
        self.engine.require_registered(participant)
        if stage_number != participant.frontier:
            raise NotCurrentStage(currentStage=participant.frontier)

        stage = self._choice_stage(stage_number)
        cfg = stage.config
        if option not in cfg.option_ids:
            raise InvalidOption(options=cfg.option_ids)

        round_id = window_start(self.clock(), cfg.window_ms)
        vote = PendingVote(stage=stage_number, group_id=cfg.group_id, round_id=round_id, option=option)
        recorded = self.store.cast_vote(participant_id, vote, cfg.window_ms)
        if recorded:
            log.info("[escape] vote stage=%s round=%s option=%s participant=%s",
                     stage_number, round_id, option, participant_id)
        return VoteReceipt(round_id=round_id, window_ms=cfg.window_ms, recorded=recorded)

    def check_result(self, participant_id: str) -> VoteResult:
        participant = self.store.get_participant(participant_id) if participant_id else None
        if participant is None or participant.pending is None:
            raise NoPendingVote()
        vote = participant.pending

        stage = self.catalog.lookup(vote.stage)
        if stage is None or not isinstance(stage.config, ChoiceConfig):
            # the catalog changed under a stale vote
            self.store.clear_pending_vote(participant_id, vote)
            raise NoPendingVote()
        cfg = stage.config

        now = self.clock()
        window_end = vote.round_id + cfg.window_ms
        if now < window_end:
            return VoteResult(status=PENDING, frontier=participant.frontier,
                              wait_ms=window_end - now, option=vote.option)

        counts = self.store.round_counts(vote.group_id, vote.stage, vote.round_id)
        resolution = self.store.get_resolution(vote.group_id, vote.stage, vote.round_id)
        if resolution is None:
            computed = resolve_counts(counts, cfg.option_ids, cfg.mode)
            resolution = self.store.resolve_round(vote.group_id, vote.stage, vote.round_id,
                                                  cfg.window_ms, computed)
            log.info("[escape] round resolved stage=%s round=%s outcome=%s winner=%s counts=%s",
                     vote.stage, vote.round_id, resolution.outcome, resolution.winning_option, counts)

        full_counts = {o: int(counts.get(o, 0)) for o in cfg.option_ids}

        if resolution.outcome == DRAW_OUTCOME:
            status = DRAW
        elif resolution.outcome == WINNER and resolution.winning_option == vote.option:
            status = WIN
        else:
            status = LOSE

        if status == LOSE:
            self.store.clear_pending_vote(participant_id, vote)
            return VoteResult(status=LOSE, frontier=participant.frontier, option=vote.option,
                              winning_option=resolution.winning_option, counts=full_counts)

        adv = self.engine.advance(participant, vote.stage)
        self.store.clear_pending_vote(participant_id, vote)
        return VoteResult(
            status=status,
            frontier=adv.frontier,
            option=vote.option,
            winning_option=resolution.winning_option,
            counts=full_counts,
            next_stage=adv.next_stage,
        )
