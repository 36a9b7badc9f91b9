# app/errors.py

from __future__ import annotations


class DashboardError(Exception):
    """
    Basisklasse aller erwarteten Fehler.
    `kind` wird von den Routes auf HTTP-Status und JSON abgebildet.
    """

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(DashboardError):
    # RCON deaktiviert, unvollständig konfiguriert oder Library fehlt
    kind = "configuration"


class TransportError(DashboardError):
    # Verbindung / Timeout / Protokollfehler zum Gameserver
    kind = "transport"


class ResolutionError(DashboardError):
    # Spieler konnte nicht auf einen verbundenen Slot gemappt werden
    kind = "resolution"


class ValidationError(DashboardError):
    kind = "validation"


class PersistenceError(DashboardError):
    kind = "persistence"
