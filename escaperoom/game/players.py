# escaperoom/game/players.py
"""Display names and the optional pre-registered player roster."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List

from .errors import (
    InvalidName,
    InvalidRequest,
    NameTaken,
    PlayerAlreadyUsed,
    PlayerModeDisabled,
    PlayerNotFound,
)
from .store import ParticipantState, RosterEntry

DEFAULT_NAME_PATTERN = r"^[A-Za-z0-9_ ]{2,12}$"


class PlayerDirectory:
    def __init__(self, store, name_pattern: str = DEFAULT_NAME_PATTERN, player_mode: bool = False):
        self.store = store
        self.name_re = re.compile(name_pattern)
        self.player_mode = player_mode

    def set_display_name(self, participant_id: str, name: str) -> ParticipantState:
        if not participant_id:
            raise InvalidRequest("participant id is required")
        name = (name or "").strip()
        if not 2 <= len(name) <= 12 or not self.name_re.match(name):
            raise InvalidName()

        # point-in-time scan; two racing claims can both pass
        holder = self.store.name_holder(name)
        if holder and holder != participant_id:
            raise NameTaken()
        self.store.set_display_name(participant_id, name)
        return self.store.get_or_create_participant(participant_id)

    def register_player(self, participant_id: str, code: str) -> RosterEntry:
        if not self.player_mode:
            raise PlayerModeDisabled()
        participant_id = (participant_id or "").strip()
        code = (code or "").strip()
        if not participant_id:
            raise InvalidRequest("participant id is required")
        if not code:
            raise InvalidRequest("Enter your player code.", needsReset=True)

        entry = self.store.get_roster_player(code)
        if entry is None:
            raise PlayerNotFound()
        if entry.participant_id not in (None, participant_id):
            raise PlayerAlreadyUsed()
        # roster names skip the pattern check but still have to be unique
        holder = self.store.name_holder(entry.name)
        if holder and holder != participant_id:
            raise NameTaken()
        if not self.store.claim_roster_player(code, participant_id):
            raise PlayerAlreadyUsed()
        return self.store.get_roster_player(code)

    def import_roster(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Admin upload. Names may be up to 40 characters and are exempt from the display-name pattern."""
        entries: List[RosterEntry] = []
        seen_names = set()
        for i, row in enumerate(rows):
            if not isinstance(row, dict):
                raise InvalidRequest(f"roster row {i} is not an object")
            code = str(row.get("code") or "").strip()
            if not code:
                raise InvalidRequest(f"roster row {i} has no code")
            name = str(row.get("name") or code).strip()[:40]
            if name.lower() in seen_names:
                raise InvalidRequest(f"roster row {i} repeats the name {name!r}")
            seen_names.add(name.lower())
            team = row.get("team")
            entries.append(RosterEntry(code=code, name=name, team=str(team) if team else None))
        return self.store.upsert_roster(entries)
