# app/services/service_factory.py

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator

from app.infrastructure.database_handler import DatabaseHandler
from app.infrastructure.rcon_debug_log import RconDebugLog
from app.infrastructure.rcon_handler import DEFAULT_TIMEOUT_SECONDS, DEFAULT_TRANSPORT_FACTORY, RconClient
from app.services.ban_service import BanOrchestrator
from app.services.settings_service import SettingsStore

DEFAULT_DEBUG_LOG_PATH = "logs/rcon_debug.log"

# .../app/services/service_factory.py -> parents: [services, app, projectroot]
PROJECT_ROOT = Path(__file__).resolve().parents[2]


def rcon_timeout_seconds(config: Dict[str, Any]) -> float:
    try:
        return float(config.get("rcon_timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
    except (TypeError, ValueError):
        return DEFAULT_TIMEOUT_SECONDS


def debug_log_from_config(config: Dict[str, Any]) -> RconDebugLog:
    """
    Relative Pfade gelten ab Projektroot (wie config.json), nicht ab dem Arbeitsverzeichnis.
    """
    path = Path(config.get("rcon_debug_log_path") or DEFAULT_DEBUG_LOG_PATH)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return RconDebugLog(path)


@dataclass
class DashboardServices:
    db: DatabaseHandler
    settings: SettingsStore
    rcon: RconClient
    bans: BanOrchestrator


@contextmanager
def open_services(
    config: Dict[str, Any],
    *,
    db_factory=DatabaseHandler,
    transport_factory=DEFAULT_TRANSPORT_FACTORY,
) -> Iterator[DashboardServices]:
    """
    Verkabelt alle Komponenten für genau einen Request.
    Die RCON-Einstellungen werden einmal pro Request geladen, verbunden wird erst beim ersten Befehl.
    """
    with db_factory(config) as db:
        store = SettingsStore(db)
        rcon = RconClient(
            store.load(),
            transport_factory=transport_factory,
            debug_log=debug_log_from_config(config),
            timeout=rcon_timeout_seconds(config),
        )
        try:
            yield DashboardServices(db=db, settings=store, rcon=rcon, bans=BanOrchestrator(db, rcon))
        finally:
            rcon.close()
