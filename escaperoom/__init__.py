import os
from typing import Callable, Optional

from flask import Flask
from flask_cors import CORS

from config import config
from escaperoom.extensions import db


def create_app(config_name: str = "default", clock: Optional[Callable[[], int]] = None) -> Flask:
    app = Flask(__name__)
    cfg = config[config_name]
    app.config.from_object(cfg)
    cfg.init_app(app)

    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass

    # Extensions
    db.init_app(app)
    CORS(app)

    # Tables (idempotent; no migrations needed for a fresh event)
    from escaperoom.game import models as _game_models  # noqa: F401
    with app.app_context():
        db.create_all()

    # Game services + blueprints
    from escaperoom.game import create_game_bp
    from escaperoom.game.services import init_game
    from escaperoom.admin_routes import admin_bp

    init_game(app, db, clock=clock)
    app.register_blueprint(create_game_bp())
    app.register_blueprint(admin_bp)

    return app
