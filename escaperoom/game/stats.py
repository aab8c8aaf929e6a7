# escaperoom/game/stats.py
"""Read-only views over the arrival ledger for the leaderboard and admin page."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List

from .catalog import StageCatalog


def _iso(ms: int | None) -> str | None:
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).isoformat()


def _clearer_name(row: Dict[str, Any]) -> str:
    return row.get("display_name") or "Guest"


def stage_leaderboard(store, stage: int, limit: int = 50) -> List[Dict[str, Any]]:
    return [{
        "rank": r["rank"],
        "name": _clearer_name(r),
        "clearedAt": _iso(r.get("cleared_ms")),
    } for r in store.clear_events(stage, limit=limit)]


def admin_stats(store, catalog: StageCatalog, clearer_limit: int = 500) -> Dict[str, Any]:
    """Per stage: cumulative clears, clearer names in rank order and who is currently working on it."""
    counts = store.stage_counts()
    challengers: Dict[int, List[str]] = defaultdict(list)
    finished = 0
    participants = store.all_participants()
    for p in participants:
        if catalog.lookup(p.frontier) is None:
            finished += 1
        else:
            challengers[p.frontier].append(p.label)

    max_stage = catalog.max_stage_number()
    stages = []
    for s in catalog:
        stages.append({
            "stage": s.stage,
            "type": s.type,
            "title": s.title,
            "isFinal": s.stage == max_stage,
            "clearedCount": counts.get(s.stage, 0),
            "clearers": [_clearer_name(r) for r in store.clear_events(s.stage, limit=clearer_limit)],
            "challengers": sorted(challengers.get(s.stage, [])),
        })
    return {
        "stages": stages,
        "participants": len(participants),
        "finished": finished,
        "maxStage": max_stage,
    }
