# app/__init__.py

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import mysql.connector
from flask import Flask, request

from app.infrastructure.log_handler import logger
from app.errors import DashboardError, PersistenceError
from app.policies.access_policy import load_request_context
from app.routes.route_helpers import error_response

# Blueprints
from app.routes.players_routes import players_bp
from app.routes.ban_routes import bans_bp
from app.routes.rcon_routes import rcon_bp


ROOT_DIR = Path(__file__).resolve().parent.parent  # Projektroot (da wo config.json liegt)


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _resolve(path: str | Path) -> Path:
    path = Path(path)
    if not path.is_absolute():
        path = ROOT_DIR / path
    return path


def load_app_config(config_path: str | Path = "config.json") -> Dict[str, Any]:
    return _load_json(_resolve(config_path))


def load_secret_key(secret_path: str | Path = "secret_key.json") -> str:
    data = _load_json(_resolve(secret_path))
    secret = data.get("secret_key")
    if not secret:
        raise RuntimeError("secret_key fehlt in secret_key.json")
    return secret


def create_app(config: Dict[str, Any] | None = None, secret_key: str | None = None) -> Flask:
    """
    App Factory:
    - lädt config + secret_key (oder nimmt die übergebenen Werte, z.B. in Tests)
    - erstellt Flask App (Templates aus app/)
    - registriert Blueprints + Request-Kontext
    - legt server_settings an, falls die Tabelle fehlt
    """
    cfg = config if config is not None else load_app_config("config.json")
    secret = secret_key or load_secret_key("secret_key.json")

    app = Flask(__name__, template_folder="templates")

    # zentral verfügbar machen
    app.config["APP_CONFIG"] = cfg
    app.config["SECRET_KEY"] = secret

    logger.info("App initialisiert: Config + Secret geladen.")

    # Eingeloggter User (aus dem Steam-Login) pro Request in flask.g
    app.before_request(load_request_context)

    app.register_blueprint(players_bp)
    app.register_blueprint(bans_bp)
    app.register_blueprint(rcon_bp)
    _register_error_handlers(app)

    logger.info("Blueprints registriert.")

    if cfg.get("init_database", True):
        _init_database(app)

    return app


def _register_error_handlers(app: Flask) -> None:
    """
    Fehler, die keine Route selbst abfängt (z.B. DB nicht erreichbar), kommen
    trotzdem im gleichen Format wie die Route-Fehler zurück.
    """

    @app.errorhandler(DashboardError)
    def _dashboard_error(error: DashboardError):
        return error_response(error)

    @app.errorhandler(mysql.connector.Error)
    def _database_error(error: mysql.connector.Error):
        logger.error(f"Datenbankfehler bei {request.method} {request.path}: {error}")
        return error_response(PersistenceError("Database error, please try again later"))


def _init_database(app: Flask) -> None:
    from app.infrastructure.database_handler import DatabaseHandler  # late import (verhindert Import-Zyklen)

    cfg = app.config["APP_CONFIG"]
    db_factory = app.config.get("DB_FACTORY", DatabaseHandler)

    try:
        with db_factory(cfg) as db:
            db.create_server_settings_table()
    except Exception as e:
        # Dashboard soll trotzdem starten, RCON bleibt dann deaktiviert
        logger.error(f"server_settings konnte nicht initialisiert werden: {e}")
