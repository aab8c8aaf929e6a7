# escaperoom/game/__init__.py
# -*- coding: utf-8 -*-
"""
Escape Room - Blueprint Factory

This module exposes `create_game_bp()` which:
- Creates the Flask blueprint for the stage game.
- Attaches route handlers from routes.py.

Usage (in your app factory):
    from escaperoom.game import create_game_bp
    from escaperoom.game.services import init_game
    init_game(app, db)
    app.register_blueprint(create_game_bp())
"""

from __future__ import annotations
from flask import Blueprint


def create_game_bp() -> Blueprint:
    """
    Create and return the blueprint for the game API.
    Routes live under /api to match the static client.
    """
    bp = Blueprint("game", __name__)

    # Attach routes
    from .routes import init_routes
    init_routes(bp)

    return bp
