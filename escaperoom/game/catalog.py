# escaperoom/game/catalog.py
# -*- coding: utf-8 -*-
"""
Stage catalog: the ordered, read-only list of stage definitions.

Each stage carries a puzzle type and a type-specific configuration object.
The catalog is built once per process, either from the built-in list below
or from a JSON file (ESCAPE_STAGES_FILE) holding a list of the same dicts.
"""

from __future__ import annotations

import bisect
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Union

INPUT = "INPUT"
UPDOWN = "UPDOWN"
TAP = "TAP"
PATTERN = "PATTERN"
CHOICE = "CHOICE"
PATH = "PATH"

PUZZLE_TYPES = (INPUT, UPDOWN, TAP, PATTERN, CHOICE, PATH)

MINORITY = "minority"
MAJORITY = "majority"

DEFAULT_WINDOW_MS = 60000


# --------------------------------------------------------------------
# Type-specific configuration (one variant per puzzle type)
# --------------------------------------------------------------------

@dataclass(frozen=True)
class TextConfig:
    kind: ClassVar[str] = INPUT

    def public(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class UpDownConfig:
    kind: ClassVar[str] = UPDOWN
    low: int = 1
    high: int = 1000

    def public(self) -> Dict[str, Any]:
        return {"min": self.low, "max": self.high}


@dataclass(frozen=True)
class TapConfig:
    kind: ClassVar[str] = TAP
    required_taps: int = 5
    reset_after_ms: int = 5000

    @property
    def sentinel(self) -> str:
        # what the client submits once the tap count is reached
        return f"TAP_{self.required_taps}"

    def public(self) -> Dict[str, Any]:
        return {"requiredTaps": self.required_taps, "resetAfterMs": self.reset_after_ms}


@dataclass(frozen=True)
class PatternConfig:
    kind: ClassVar[str] = PATTERN
    rows: int = 3
    cols: int = 3

    def public(self) -> Dict[str, Any]:
        return {"rows": self.rows, "cols": self.cols}


@dataclass(frozen=True)
class PathConfig:
    kind: ClassVar[str] = PATH
    directions: Tuple[str, ...] = ("U", "D", "L", "R")

    def public(self) -> Dict[str, Any]:
        return {"directions": list(self.directions)}


@dataclass(frozen=True)
class ChoiceOption:
    id: str
    label: str


@dataclass(frozen=True)
class ChoiceConfig:
    kind: ClassVar[str] = CHOICE
    group_id: str
    options: Tuple[ChoiceOption, ...]
    mode: str = MINORITY
    window_ms: int = DEFAULT_WINDOW_MS

    @property
    def option_ids(self) -> List[str]:
        return [o.id for o in self.options]

    def public(self) -> Dict[str, Any]:
        return {
            "options": [{"id": o.id, "label": o.label} for o in self.options],
            "mode": self.mode,
            "windowMs": self.window_ms,
        }


StageConfig = Union[TextConfig, UpDownConfig, TapConfig, PatternConfig, PathConfig, ChoiceConfig]


@dataclass(frozen=True)
class Stage:
    stage: int
    type: str
    title: str
    answer: str
    config: StageConfig = field(default_factory=TextConfig)
    description: str = ""
    image_url: str = ""

    def public_view(self, include_answer: bool = False) -> Dict[str, Any]:
        """Client-safe payload; the answer is only attached on request."""
        out = {
            "stage": self.stage,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
            "config": self.config.public(),
        }
        if include_answer and self.answer:
            out["answer"] = self.answer
        return out


# --------------------------------------------------------------------
# Parsing (dict -> Stage)
# --------------------------------------------------------------------

def _parse_options(raw: Any) -> Tuple[ChoiceOption, ...]:
    if not raw:
        return (ChoiceOption("A", "A"), ChoiceOption("B", "B"))
    out = []
    for item in raw:
        if isinstance(item, dict):
            oid = str(item.get("id") or "").strip()
            label = str(item.get("label") or oid)
        else:
            oid = label = str(item).strip()
        if not oid:
            raise ValueError("choice option without an id")
        out.append(ChoiceOption(oid, label))
    ids = [o.id for o in out]
    if len(set(ids)) != len(ids):
        raise ValueError(f"duplicate choice options: {ids}")
    if len(out) < 2:
        raise ValueError("a choice stage needs at least two options")
    return tuple(out)


def stage_from_dict(d: Dict[str, Any], default_window_ms: int = DEFAULT_WINDOW_MS) -> Stage:
    """Build a Stage from a loosely shaped dict (built-in list or JSON file)."""
    try:
        number = int(d["stage"])
    except (KeyError, TypeError, ValueError):
        raise ValueError(f"stage entry without a numeric 'stage': {d!r}")

    ptype = str(d.get("type") or INPUT).upper()
    if ptype not in PUZZLE_TYPES:
        raise ValueError(f"stage {number}: unknown puzzle type {ptype!r}")

    cfg = d.get("config") or {}
    answer = str(d.get("answer") or "")

    if ptype == UPDOWN:
        int(answer)  # target must be an integer
        config: StageConfig = UpDownConfig(low=int(cfg.get("min", 1)), high=int(cfg.get("max", 1000)))
    elif ptype == TAP:
        tap = TapConfig(
            required_taps=int(cfg.get("requiredTaps", 5)),
            reset_after_ms=int(cfg.get("resetAfterMs", 5000)),
        )
        answer = answer or tap.sentinel
        config = tap
    elif ptype == PATTERN:
        config = PatternConfig(rows=int(cfg.get("rows", 3)), cols=int(cfg.get("cols", 3)))
        if answer and len(answer) != config.rows * config.cols:
            raise ValueError(f"stage {number}: pattern answer must have rows*cols cells")
    elif ptype == PATH:
        dirs = cfg.get("directions") or ["U", "D", "L", "R"]
        config = PathConfig(directions=tuple(str(x).upper() for x in dirs))
    elif ptype == CHOICE:
        mode = str(cfg.get("mode") or MINORITY).lower()
        if mode not in (MINORITY, MAJORITY):
            raise ValueError(f"stage {number}: unknown choice mode {mode!r}")
        window_ms = int(cfg.get("windowMs") or default_window_ms)
        if window_ms <= 0:
            raise ValueError(f"stage {number}: windowMs must be positive")
        config = ChoiceConfig(
            group_id=str(cfg.get("groupId") or f"stage-{number}"),
            options=_parse_options(d.get("options") or cfg.get("options")),
            mode=mode,
            window_ms=window_ms,
        )
    else:
        config = TextConfig()

    if ptype != CHOICE and not answer:
        raise ValueError(f"stage {number}: answer is required")

    return Stage(
        stage=number,
        type=ptype,
        title=str(d.get("title") or f"Room {number}"),
        answer=answer,
        config=config,
        description=str(d.get("description") or ""),
        image_url=str(d.get("imageUrl") or ""),
    )


# --------------------------------------------------------------------
# Catalog
# --------------------------------------------------------------------

class StageCatalog:
    def __init__(self, stages: List[Stage]):
        by_number: Dict[int, Stage] = {}
        for s in stages:
            if s.stage < 1:
                raise ValueError(f"stage numbers start at 1, got {s.stage}")
            if s.stage in by_number:
                raise ValueError(f"duplicate stage number {s.stage}")
            by_number[s.stage] = s
        self._by_number = by_number
        self._numbers = sorted(by_number)

    def __iter__(self) -> Iterator[Stage]:
        return (self._by_number[n] for n in self._numbers)

    def __len__(self) -> int:
        return len(self._numbers)

    def lookup(self, stage_number: int) -> Optional[Stage]:
        return self._by_number.get(stage_number)

    def max_stage_number(self) -> int:
        return self._numbers[-1] if self._numbers else 0

    def next_stage_number(self, after: int) -> int:
        """Next stored stage number above `after`, or after + 1 when none is left."""
        i = bisect.bisect_right(self._numbers, after)
        if i < len(self._numbers):
            return self._numbers[i]
        return after + 1

    def previous_stage_number(self, before: int) -> Optional[int]:
        i = bisect.bisect_left(self._numbers, before)
        return self._numbers[i - 1] if i > 0 else None

    @classmethod
    def from_dicts(cls, rows: List[Dict[str, Any]], default_window_ms: int = DEFAULT_WINDOW_MS) -> "StageCatalog":
        return cls([stage_from_dict(r, default_window_ms) for r in rows])


DEFAULT_STAGES: List[Dict[str, Any]] = [
    {
        "stage": 1,
        "type": INPUT,
        "title": "Room 1",
        "imageUrl": "/img/q1.png",
        "description": "The first room. Read the clue in the picture and type the answer.",
        "answer": "APPLE",
    },
    {
        "stage": 2,
        "type": UPDOWN,
        "title": "Room 2",
        "imageUrl": "/img/q2.png",
        "description": "Guess the number on the safe. It tells you whether to go higher or lower.",
        "answer": "517",
        "config": {"min": 1, "max": 1000},
    },
    {
        "stage": 3,
        "type": TAP,
        "title": "Room 3",
        "imageUrl": "/img/q3.png",
        "description": "Something in this room responds to persistence.",
        "config": {"requiredTaps": 7, "resetAfterMs": 5000},
    },
    {
        "stage": 4,
        "type": PATTERN,
        "title": "Room 4",
        "imageUrl": "/img/q4.png",
        "description": "Light the tiles to match the mural.",
        "answer": "101010101",
        "config": {"rows": 3, "cols": 3},
    },
    {
        "stage": 5,
        "type": CHOICE,
        "title": "Room 5",
        "imageUrl": "/img/q5.png",
        "description": "Two doors. Only the less crowded one opens.",
        "options": [{"id": "A", "label": "Left door"}, {"id": "B", "label": "Right door"}],
        "config": {"groupId": "doors", "mode": MINORITY},
    },
    {
        "stage": 6,
        "type": PATH,
        "title": "Room 6",
        "imageUrl": "/img/q6.png",
        "description": "Find the way through the dark maze.",
        "answer": "UURRDL",
    },
    {
        "stage": 7,
        "type": INPUT,
        "title": "Room 7",
        "imageUrl": "/img/q7.png",
        "description": "The last lock.",
        "answer": "TOMATO",
    },
]


def load_catalog(path: str = "", default_window_ms: int = DEFAULT_WINDOW_MS) -> StageCatalog:
    if not path:
        return StageCatalog.from_dicts(DEFAULT_STAGES, default_window_ms)
    with open(path, "r", encoding="utf-8") as fh:
        rows = json.load(fh)
    if isinstance(rows, dict):
        rows = rows.get("stages") or []
    return StageCatalog.from_dicts(rows, default_window_ms)
