# app/services/ban_service.py

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import mysql.connector

from app.errors import ConfigurationError, DashboardError, PersistenceError, ValidationError
from app.infrastructure.database_handler import DatabaseHandler
from app.infrastructure.log_handler import logger
from app.infrastructure.rcon_handler import PlayerRecord, RconClient
from app.policies.ban_policy import (
    BanScope,
    is_protected_user,
    is_steam_id64,
    parse_ban_scope,
    parse_duration_hours,
    placeholder_name,
    role_columns_for,
    server_ban_minutes,
)


@dataclass
class BanOutcome:
    """
    Ergebnis eines orchestrierten Requests: ein Eintrag pro Teilschritt.
    Warnungen zu Gameserver-Aktionen machen das Ergebnis NICHT zu einem Fehler.
    """

    success: bool = True
    messages: List[str] = field(default_factory=list)

    def add(self, message: str) -> None:
        self.messages.append(message)

    @property
    def message(self) -> str:
        return ". ".join(self.messages)

    @property
    def warnings(self) -> List[str]:
        return [m for m in self.messages if m.startswith("Warning:")]

    def to_json(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}


class KickOutcome(BanOutcome):
    pass


class BanOrchestrator:
    """
    Whitelist-Ban in der DB + optional gespiegelte Aktion auf dem Gameserver.

    Reihenfolge ist fix: zuerst Commit (oder Rollback) der DB-Änderung,
    erst danach RCON. Der Whitelist-Status hängt nie an der Erreichbarkeit des Servers.
    """

    def __init__(self, db: DatabaseHandler, rcon: Optional[RconClient] = None):
        self.db = db
        self.rcon = rcon

    def _rcon_usable(self) -> bool:
        return self.rcon is not None and self.rcon.is_usable()

    # -------------------------
    # Ban / Unban
    # -------------------------
    def issue_ban(
        self,
        user_id: int,
        actor_id: int,
        ban_scope,
        reason: str = "",
        expires_at: Optional[datetime] = None,
        also_kick: bool = False,
        also_server_ban: bool = False,
    ) -> BanOutcome:
        scope = parse_ban_scope(ban_scope)
        if expires_at is not None and not isinstance(expires_at, datetime):
            raise ValidationError("Invalid ban expiry")
        reason = (reason or "").strip()

        logger.info(
            f"Whitelist-Ban: User {user_id} durch {actor_id} (Typ {scope.value}, "
            f"bis {expires_at or 'unbefristet'}, kick={also_kick}, server_ban={also_server_ban})."
        )

        try:
            with self.db.transaction():
                user = self.db.get_user(user_id, for_update=True)
                if not user:
                    raise ValidationError("User not found")
                if is_protected_user(user):
                    raise ValidationError("Cannot ban users with ALL (Staff) role")

                self.db.deactivate_active_bans(user_id)
                self.db.insert_ban(
                    user_id=user_id,
                    banned_by_user_id=actor_id,
                    ban_type=scope.value,
                    reason=reason,
                    expires_at=expires_at,
                    server_kick=also_kick,
                    server_ban=also_server_ban,
                )
                self.db.revoke_roles(user_id, role_columns_for(scope))
        except DashboardError as e:
            logger.info(f"Abbruch: Whitelist-Ban für User {user_id} abgelehnt: {e.message}")
            raise
        except mysql.connector.Error as e:
            logger.error(f"Whitelist-Ban für User {user_id} fehlgeschlagen (Rollback): {e}")
            raise PersistenceError(f"Failed to issue ban: {e}") from e

        outcome = BanOutcome(messages=["Whitelist ban issued successfully"])
        if also_kick or also_server_ban:
            self._mirror_ban(outcome, user, reason, expires_at, also_kick, also_server_ban)
        return outcome

    def _mirror_ban(
        self,
        outcome: BanOutcome,
        user: Dict[str, Any],
        reason: str,
        expires_at: Optional[datetime],
        also_kick: bool,
        also_server_ban: bool,
    ) -> None:
        if not self._rcon_usable():
            outcome.add("Warning: RCON not enabled - server action skipped")
            logger.warning(f"Gameserver-Aktion für User {user.get('id')} übersprungen: RCON nicht aktiv.")
            return

        steam_id = user.get("steam_id") or ""

        if also_kick:
            try:
                self.rcon.kick_player(steam_id, reason)
                outcome.add("Player kicked from game server")
            except DashboardError as e:
                outcome.add(f"Warning: Server kick failed - {e.message}")
                logger.warning(f"Kick nach Whitelist-Ban fehlgeschlagen ({steam_id}): {e.message}")

        if also_server_ban:
            try:
                self.rcon.ban_player(steam_id, reason, server_ban_minutes(expires_at))
                outcome.add("Player banned from game server")
            except DashboardError as e:
                outcome.add(f"Warning: Server ban failed - {e.message}")
                logger.warning(f"Gameserver-Ban nach Whitelist-Ban fehlgeschlagen ({steam_id}): {e.message}")

    def revoke_ban(self, user_id: int, actor_id: int, reason: str = "") -> BanOutcome:
        reason = (reason or "").strip()
        self.expire_old_bans()

        logger.info(f"Whitelist-Unban: User {user_id} durch {actor_id}.")
        try:
            with self.db.transaction():
                ban = self.db.get_active_ban(user_id, for_update=True)
                if not ban:
                    raise ValidationError("User has no active ban")
                self.db.mark_ban_revoked(ban["id"], actor_id, reason)
        except DashboardError as e:
            logger.info(f"Abbruch: Unban für User {user_id} abgelehnt: {e.message}")
            raise
        except mysql.connector.Error as e:
            logger.error(f"Unban für User {user_id} fehlgeschlagen (Rollback): {e}")
            raise PersistenceError(f"Failed to remove ban: {e}") from e

        outcome = BanOutcome(messages=["Whitelist ban removed successfully"])
        if not ban.get("server_ban"):
            return outcome

        if not self._rcon_usable():
            outcome.add("Warning: RCON not enabled - server unban skipped")
            return outcome

        steam_id = ban.get("banned_user_steam_id") or ""
        try:
            self.rcon.unban_player(steam_id)
            outcome.add("Player unbanned from game server")
        except DashboardError as e:
            outcome.add(f"Warning: Server unban failed - {e.message}")
            logger.warning(f"Gameserver-Unban fehlgeschlagen ({steam_id}): {e.message}")
        return outcome

    # -------------------------
    # Active-Players-Flows
    # -------------------------
    def kick_player(self, identifier: str, reason: str = "") -> KickOutcome:
        if self.rcon is None:
            raise ConfigurationError("RCON is not enabled or not configured")
        self.rcon.kick_player(identifier, reason)
        return KickOutcome(messages=["Player kicked successfully"])

    def find_or_create_user(self, steam_id: str) -> int:
        try:
            user = self.db.get_user_by_steam_id(steam_id)
            if user:
                return int(user["id"])
            user_id = self.db.create_placeholder_user(steam_id, placeholder_name(steam_id))
        except mysql.connector.Error as e:
            logger.error(f"User für Steam-ID {steam_id} konnte nicht angelegt werden: {e}")
            raise PersistenceError(f"Failed to look up player: {e}") from e

        logger.info(f"Platzhalter-User {user_id} für Steam-ID {steam_id} angelegt.")
        return user_id

    def ban_online_player(
        self,
        steam_id: str,
        actor_id: int,
        ban_scope=BanScope.BOTH,
        reason: str = "",
        duration_hours="indefinite",
        also_kick: bool = False,
        also_server_ban: bool = False,
    ) -> BanOutcome:
        steam_id = (steam_id or "").strip()
        if not is_steam_id64(steam_id):
            raise ValidationError("Invalid Steam ID")
        # Validierung vor dem Anlegen eines Platzhalter-Users
        scope = parse_ban_scope(ban_scope)
        expires_at = parse_duration_hours(duration_hours)

        user_id = self.find_or_create_user(steam_id)
        return self.issue_ban(
            user_id,
            actor_id,
            scope,
            reason,
            expires_at,
            also_kick=also_kick,
            also_server_ban=also_server_ban,
        )

    def enrich_players(self, players: List[PlayerRecord]) -> List[Dict[str, Any]]:
        """
        Ergänzt die RCON-Spielerliste um DB-User und Ban-Status.
        """
        self.expire_old_bans()
        enriched = []
        for player in players:
            entry = player.to_dict()
            entry["db_user"] = None
            entry["has_ban"] = False
            if player.guid:
                user = self.db.get_user_by_steam_id(player.guid)
                if user:
                    entry["db_user"] = user
                    entry["has_ban"] = self.db.get_active_ban(user["id"]) is not None
            enriched.append(entry)
        return enriched

    # -------------------------
    # Ban-Status (mit Lazy-Expiry)
    # -------------------------
    def expire_old_bans(self) -> int:
        try:
            expired = self.db.expire_old_bans()
        except mysql.connector.Error as e:
            logger.error(f"Abgelaufene Bans konnten nicht deaktiviert werden: {e}")
            raise PersistenceError(f"Failed to expire bans: {e}") from e
        if expired:
            logger.info(f"{expired} abgelaufene Ban(s) deaktiviert.")
        return expired

    def is_user_banned(self, user_id: int) -> Optional[Dict[str, Any]]:
        self.expire_old_bans()
        return self.db.get_active_ban(user_id)

    def is_user_banned_by_steam_id(self, steam_id: str) -> Optional[Dict[str, Any]]:
        user = self.db.get_user_by_steam_id(steam_id)
        if not user:
            return None
        return self.is_user_banned(user["id"])

    def get_user_bans(self, user_id: int) -> List[Dict[str, Any]]:
        self.expire_old_bans()
        return self.db.get_user_bans(user_id)

    def get_all_bans(self, page: int = 1, per_page: int = 20, search: str = "") -> Dict[str, Any]:
        self.expire_old_bans()
        page = max(1, int(page))
        per_page = max(1, int(per_page))
        search = (search or "").strip()

        total = self.db.count_active_bans(search)
        bans = self.db.get_active_bans(per_page, (page - 1) * per_page, search)
        return {
            "bans": bans,
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": max(1, math.ceil(total / per_page)),
        }
