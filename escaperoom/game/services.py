# escaperoom/game/services.py
from __future__ import annotations

from typing import Callable, Optional

from flask import current_app

from .catalog import StageCatalog, load_catalog
from .core import now_ms
from .players import PlayerDirectory
from .progression import ProgressionEngine
from .store import SqlStore
from .voting import VoteCoordinator

EXTENSION_KEY = "escape_game"


class GameServices:
    """The engine, the vote coordinator and the player directory over one store."""

    def __init__(self, store, catalog: StageCatalog, clock: Callable[[], int] = now_ms,
                 player_mode: bool = False, name_pattern: Optional[str] = None):
        self.store = store
        self.catalog = catalog
        self.clock = clock
        self.engine = ProgressionEngine(store, catalog, clock=clock, player_mode=player_mode)
        self.votes = VoteCoordinator(store, catalog, self.engine, clock=clock)
        if name_pattern:
            self.players = PlayerDirectory(store, name_pattern=name_pattern, player_mode=player_mode)
        else:
            self.players = PlayerDirectory(store, player_mode=player_mode)


def init_game(app, db, clock: Optional[Callable[[], int]] = None) -> GameServices:
    catalog = load_catalog(
        app.config.get("ESCAPE_STAGES_FILE") or "",
        default_window_ms=int(app.config.get("ESCAPE_VOTE_WINDOW_MS") or 60000),
    )
    services = GameServices(
        SqlStore(db),
        catalog,
        clock=clock or now_ms,
        player_mode=bool(app.config.get("ESCAPE_PLAYER_MODE")),
        name_pattern=app.config.get("ESCAPE_NAME_PATTERN"),
    )
    app.extensions[EXTENSION_KEY] = services
    app.logger.info("[escape] catalog loaded: %d stages, max=%d", len(catalog), catalog.max_stage_number())
    return services


def get_game() -> GameServices:
    return current_app.extensions[EXTENSION_KEY]
