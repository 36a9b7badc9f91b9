# app/services/settings_service.py

from __future__ import annotations

from typing import Any, Dict

import mysql.connector

from app.errors import PersistenceError, ValidationError
from app.infrastructure.database_handler import DatabaseHandler
from app.infrastructure.log_handler import logger
from app.infrastructure.rcon_handler import DEFAULT_PORT, RconSettings

SETTINGS_PREFIX = "rcon_"

# Feldname im Dataclass -> Schlüssel in server_settings
FIELD_KEYS = {
    "enabled": "rcon_enabled",
    "host": "rcon_host",
    "port": "rcon_port",
    "password": "rcon_password",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUE_VALUES


def _to_port(value: Any, *, strict: bool) -> int:
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        if strict:
            raise ValidationError("RCON port must be a number") from None
        return 0
    if strict and not 1 <= port <= 65535:
        raise ValidationError("RCON port must be between 1 and 65535")
    return port


def settings_from_rows(rows: Dict[str, str]) -> RconSettings:
    """
    String-Key/Value aus server_settings -> typisierte RconSettings.
    Fehlende Schlüssel behalten die Defaults.
    """
    settings = RconSettings()
    if "rcon_enabled" in rows:
        settings.enabled = _to_bool(rows["rcon_enabled"])
    if "rcon_host" in rows:
        settings.host = (rows["rcon_host"] or "").strip()
    if "rcon_port" in rows:
        settings.port = _to_port(rows["rcon_port"], strict=False)
    if "rcon_password" in rows:
        settings.password = rows["rcon_password"] or ""
    return settings


def normalize_update(fields: Dict[str, Any]) -> Dict[str, str]:
    """
    Validiert ein (Teil-)Update und liefert {setting_key: string_value}.
    Ein leeres Passwort bedeutet "bestehendes behalten".
    """
    values: Dict[str, str] = {}

    if "enabled" in fields:
        values["rcon_enabled"] = "1" if _to_bool(fields["enabled"]) else "0"
    if "host" in fields:
        values["rcon_host"] = (fields["host"] or "").strip()
    if "port" in fields:
        raw_port = fields["port"]
        if raw_port in (None, ""):
            raw_port = DEFAULT_PORT
        values["rcon_port"] = str(_to_port(raw_port, strict=True))
    if fields.get("password"):
        values["rcon_password"] = str(fields["password"])

    return values


class SettingsStore:
    def __init__(self, db: DatabaseHandler):
        self.db = db

    def load(self) -> RconSettings:
        try:
            rows = self.db.fetch_settings(SETTINGS_PREFIX)
        except Exception as e:
            if DatabaseHandler.is_table_not_found_error(e):
                logger.info("Tabelle server_settings existiert noch nicht – RCON bleibt deaktiviert.")
            else:
                logger.error(f"RCON-Einstellungen konnten nicht geladen werden: {e}")
            return RconSettings()
        return settings_from_rows(rows)

    def get_masked(self) -> Dict[str, Any]:
        return self.load().masked()

    def update(self, fields: Dict[str, Any], actor_id: int | None) -> RconSettings:
        values = normalize_update(fields)
        if not values:
            raise ValidationError("No settings to update")

        logger.info(f"RCON-Einstellungen werden aktualisiert ({', '.join(sorted(values))}) von User {actor_id}.")
        try:
            with self.db.transaction():
                for key, value in values.items():
                    self.db.upsert_setting(key, value, actor_id)
        except mysql.connector.Error as e:
            logger.error(f"RCON-Einstellungen konnten nicht gespeichert werden (Rollback): {e}")
            raise PersistenceError(f"Failed to save RCON settings: {e}") from e

        return self.load()
