# app/infrastructure/rcon_handler.py

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Any, Callable

from app.errors import ConfigurationError, ResolutionError, TransportError, ValidationError
from app.policies.ban_policy import is_steam_id64

from .log_handler import logger
from .rcon_debug_log import RconDebugLog

# Optionale Abhängigkeit: ohne `rcon` läuft das Dashboard weiter, RCON bleibt aus
try:
    from rcon.battleye import Client as BattlEyeClient
except ImportError:
    BattlEyeClient = None


DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_PORT = 2306
DEFAULT_KICK_REASON = "Kicked by admin"
DEFAULT_BAN_REASON = "Banned by admin"

# Das Protokoll liefert keine Session-Dauer
SESSION_TIME_UNAVAILABLE = "N/A"

# Zeile aus der BattlEye-Antwort auf "players", z.B.
#   0   1.2.3.4:2304    47   76561198000000001(OK) Name (Lobby)
# Spieler, die noch verbinden, haben "-" statt GUID.
_PLAYER_LINE_RE = re.compile(
    r"^(?P<num>\d+)\s+"
    r"(?P<ip>\S+:\d+)\s+"
    r"(?P<ping>-?\d+)\s+"
    r"(?P<guid>[0-9a-fA-F]+|-)(?:\((?P<status>[^)]*)\))?\s+"
    r"(?P<name>.+?)\s*$"
)
_LOBBY_SUFFIX = " (Lobby)"
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x09\x0B\x0C\x0E-\x1F\x7F]")


@dataclass
class RconSettings:
    enabled: bool = False
    host: str = ""
    port: int = DEFAULT_PORT
    password: str = ""

    def is_complete(self) -> bool:
        return bool(self.enabled and self.host and self.password and self.port > 0)

    def masked(self) -> dict[str, Any]:
        return {
            "rcon_enabled": self.enabled,
            "rcon_host": self.host,
            "rcon_port": self.port,
            "rcon_password_set": bool(self.password),
        }


@dataclass
class PlayerRecord:
    slot: int
    name: str
    guid: str
    ip: str
    ping: int
    session_time: str = SESSION_TIME_UNAVAILABLE
    lobby: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "num": self.slot,
            "name": self.name,
            "guid": self.guid,
            "ip": self.ip,
            "ping": self.ping,
            "time": self.session_time,
            "lobby": self.lobby,
        }


def parse_players(raw: str) -> list[PlayerRecord]:
    """
    Parst die Antwort auf "players". Kopf-, Trenn- und Summenzeilen werden übersprungen.
    """
    players: list[PlayerRecord] = []
    for line in _CONTROL_CHARS_RE.sub("", raw or "").splitlines():
        match = _PLAYER_LINE_RE.match(line.strip())
        if not match:
            continue

        name = match.group("name")
        lobby = name.endswith(_LOBBY_SUFFIX)
        if lobby:
            name = name[: -len(_LOBBY_SUFFIX)].rstrip()

        players.append(
            PlayerRecord(
                slot=int(match.group("num")),
                name=name,
                guid="" if match.group("guid") == "-" else match.group("guid"),
                ip=match.group("ip"),
                ping=int(match.group("ping")),
                lobby=lobby,
            )
        )
    return players


class BattlEyeTransport:
    """
    Eine eingeloggte BattlEye-RCON-Session (UDP) über rcon.battleye.Client.
    """

    def __init__(self, host: str, port: int, password: str, timeout: float):
        self._client = BattlEyeClient(host, port, passwd=password, timeout=timeout)
        try:
            self._client.connect(login=True)
        except Exception:
            self._client.close()
            raise

    def command(self, raw: str) -> str:
        response = self._client.run(raw)
        if isinstance(response, bytes):
            response = response.decode("utf-8", errors="replace")
        return response or ""

    def close(self) -> None:
        self._client.close()


DEFAULT_TRANSPORT_FACTORY = BattlEyeTransport if BattlEyeClient is not None else None

TransportFactory = Callable[[str, int, str, float], Any]


class RconClient:
    """
    Einziger Kontaktpunkt zum Gameserver-Adminport.

    Die Verbindung wird beim ersten Befehl aufgebaut und danach wiederverwendet.
    Jeder Transportfehler verwirft die Verbindung, der nächste Aufruf verbindet neu.
    Auflösungsfehler (Spieler nicht gefunden) lassen die Verbindung bestehen.
    """

    def __init__(
        self,
        settings: RconSettings,
        *,
        transport_factory: TransportFactory | None = DEFAULT_TRANSPORT_FACTORY,
        debug_log: RconDebugLog | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.settings = settings
        self.timeout = timeout
        self.debug_log = debug_log
        self._transport_factory = transport_factory
        self._transport = None
        self._lock = threading.Lock()

    # -------------------------
    # Zustand
    # -------------------------
    @property
    def library_available(self) -> bool:
        return self._transport_factory is not None

    @property
    def connected(self) -> bool:
        return self._transport is not None

    def is_usable(self) -> bool:
        return self.library_available and self.settings.is_complete()

    def _debug(self, message: str, payload: dict[str, Any] | None = None) -> None:
        if self.debug_log is not None:
            self.debug_log.append(message, payload)

    def _require_usable(self) -> None:
        if not self.library_available:
            raise ConfigurationError("RCON library not installed. Install the 'rcon' package to enable RCON features.")
        if not self.settings.is_complete():
            raise ConfigurationError("RCON is not enabled or not configured")

    def _connect(self):
        if self._transport is not None:
            return self._transport

        s = self.settings
        payload = {"host": s.host, "port": s.port, "password": "***", "timeout": self.timeout}
        self._debug("Connecting to RCON server", payload)
        try:
            self._transport = self._transport_factory(s.host, s.port, s.password, self.timeout)
        except Exception as e:
            self._debug("RCON connection failed", {**payload, "error": repr(e)})
            logger.error(f"RCON-Verbindung zu {s.host}:{s.port} fehlgeschlagen: {e}")
            raise TransportError(f"Failed to connect to RCON server: {e}") from e

        self._debug("RCON connection established", {"host": s.host, "port": s.port})
        logger.info(f"RCON-Verbindung zu {s.host}:{s.port} hergestellt.")
        return self._transport

    def _discard(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            transport.close()
        except Exception as e:
            logger.warning(f"RCON-Verbindung konnte nicht sauber geschlossen werden: {e}")

    def close(self) -> None:
        with self._lock:
            self._discard()

    def _send(self, transport, command: str) -> str:
        response = transport.command(command)
        self._debug("RCON command", {"command": command, "response": response})
        return response

    def _exchange(self, action: str, fn: Callable[[Any], Any]):
        """
        Führt fn(transport) unter dem Lock aus und übersetzt Fehler in die Taxonomie.
        """
        self._require_usable()
        with self._lock:
            transport = self._connect()
            try:
                return fn(transport)
            except ResolutionError as e:
                self._debug(f"RCON {action}: player not resolved", {"error": e.message})
                raise
            except Exception as e:
                self._debug(f"RCON {action} failed", {"error": repr(e)})
                logger.error(f"RCON {action} fehlgeschlagen: {e}")
                self._discard()
                raise TransportError(f"Failed to {action}: {e}") from e

    def _fetch_players(self, transport) -> list[PlayerRecord]:
        return parse_players(self._send(transport, "players"))

    # -------------------------
    # Operationen
    # -------------------------
    def test_connection(self) -> dict[str, Any]:
        try:
            players = self.list_players()
        except (ConfigurationError, TransportError) as e:
            return {"reachable": False, "message": e.message}
        return {
            "reachable": True,
            "message": "Connected successfully to RCON server",
            "player_count": len(players),
        }

    def list_players(self) -> list[PlayerRecord]:
        return self._exchange("get player list", self._fetch_players)

    def kick_player(self, identifier, reason: str = "") -> int:
        """
        Kickt einen verbundenen Spieler. Gibt den verwendeten Slot zurück.
        """
        identifier = str(identifier).strip()
        if not identifier:
            raise ValidationError("Player identifier is required")
        reason = (reason or "").strip() or DEFAULT_KICK_REASON

        def _kick(transport) -> int:
            if identifier.isdigit() and not is_steam_id64(identifier):
                slot = int(identifier)
            else:
                slot = self._resolve(self._fetch_players(transport), identifier).slot
            self._send(transport, f"kick {slot} {reason}")
            return slot

        slot = self._exchange("kick player", _kick)
        logger.info(f"Spieler {identifier} (Slot {slot}) gekickt: {reason}")
        return slot

    def ban_player(self, identifier, reason: str = "", duration_minutes: int = 0) -> str:
        """
        Bannt per GUID auf dem Gameserver. duration_minutes == 0 bedeutet permanent.
        Gibt die gebannte GUID zurück.
        """
        identifier = str(identifier).strip()
        if not identifier:
            raise ValidationError("Player identifier is required")
        try:
            duration_minutes = int(duration_minutes)
        except (TypeError, ValueError):
            raise ValidationError("Ban duration must be a whole number of minutes") from None
        if duration_minutes < 0:
            raise ValidationError("Ban duration must not be negative")
        reason = (reason or "").strip() or DEFAULT_BAN_REASON

        def _ban(transport) -> str:
            if is_steam_id64(identifier):
                guid = identifier
            else:
                player = self._resolve(self._fetch_players(transport), identifier)
                if not player.guid:
                    raise ResolutionError("Could not find player GUID for banning")
                guid = player.guid
            self._send(transport, f"addBan {guid} {duration_minutes} {reason}")
            return guid

        guid = self._exchange("ban player", _ban)
        logger.info(f"Spieler {guid} auf dem Gameserver gebannt ({duration_minutes} min): {reason}")
        return guid

    def unban_player(self, steam_id: str) -> None:
        steam_id = (steam_id or "").strip()
        if not steam_id:
            raise ValidationError("Steam ID is required")
        self._exchange("unban player", lambda t: self._send(t, f"removeBan {steam_id}"))
        logger.info(f"Gameserver-Ban für {steam_id} aufgehoben.")

    def send_global_message(self, text: str) -> None:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text is required")
        self._exchange("send message", lambda t: self._send(t, f"say -1 {text}"))

    def execute_raw_command(self, command: str) -> str:
        command = (command or "").strip()
        if not command:
            raise ValidationError("Command is required")
        return self._exchange("execute command", lambda t: self._send(t, command))

    # -------------------------
    # Auflösung Identifier -> Spieler
    # -------------------------
    @staticmethod
    def _resolve(players: list[PlayerRecord], identifier: str) -> PlayerRecord:
        if is_steam_id64(identifier):
            for player in players:
                if player.guid == identifier:
                    return player
            raise ResolutionError(f"Player with Steam ID {identifier} is not connected")

        if identifier.isdigit():
            for player in players:
                if player.slot == int(identifier):
                    return player
        else:
            needle = identifier.lower()
            for player in players:
                if needle in player.name.lower():
                    return player

        raise ResolutionError(f"Player '{identifier}' is not connected")
