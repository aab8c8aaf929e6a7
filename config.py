# config.py

import os
from sqlalchemy.pool import QueuePool


def _env_flag(key: str, default: str = "0") -> bool:
    return str(os.getenv(key, default)).strip().lower() in ("1", "true", "yes", "y", "on")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-dev-key")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_AS_ASCII = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 280,
        "pool_size": 5,
        "max_overflow": 10,
        "poolclass": QueuePool
    }

    # Game settings
    ESCAPE_ADMIN_PASSWORD = os.getenv("ESCAPE_ADMIN_PASSWORD", "")
    ESCAPE_STAGES_FILE = os.getenv("ESCAPE_STAGES_FILE", "")
    ESCAPE_VOTE_WINDOW_MS = int(os.getenv("ESCAPE_VOTE_WINDOW_MS", "60000"))
    ESCAPE_PLAYER_MODE = _env_flag("ESCAPE_PLAYER_MODE")
    ESCAPE_NAME_PATTERN = os.getenv("ESCAPE_NAME_PATTERN", r"^[A-Za-z0-9_ ]{2,12}$")
    ESCAPE_CLEAR_IMAGE_URL = os.getenv("ESCAPE_CLEAR_IMAGE_URL", "/img/clear.png")

    @staticmethod
    def init_app(app):
        pass

class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DEV_DATABASE_URL",
        "sqlite:///local.db"  # resolved inside the instance folder
    )

class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    # in-memory sqlite needs the driver defaults (single static connection)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    ESCAPE_ADMIN_PASSWORD = "letmein"
    ESCAPE_STAGES_FILE = ""
    ESCAPE_VOTE_WINDOW_MS = 60000
    ESCAPE_PLAYER_MODE = False
    ESCAPE_NAME_PATTERN = r"^[A-Za-z0-9_ ]{2,12}$"

class ProductionConfig(Config):
    DEBUG = False

    @classmethod
    def get_database_uri(cls):
        uri = os.getenv("DATABASE_URL", "")
        if uri.startswith("postgres://"):
            uri = uri.replace("postgres://", "postgresql://", 1)
        if uri and "sslmode" not in uri:
            uri += "?sslmode=require"
        return uri

    SQLALCHEMY_DATABASE_URI = get_database_uri.__func__(None)

config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig
}
