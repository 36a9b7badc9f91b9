# app/infrastructure/database_handler.py

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable

import mysql.connector
from mysql.connector import errorcode

from .log_handler import logger


# Rollen-Spalten, die durch einen Whitelist-Ban entzogen werden dürfen
REVOCABLE_ROLE_COLUMNS = ("role_s3", "role_cas")

DEFAULT_SERVER_SETTINGS = (
    ("rcon_enabled", "0"),
    ("rcon_host", ""),
    ("rcon_port", "2306"),
    ("rcon_password", ""),
)

_BAN_LIST_COLUMNS = """
    wb.*,
    banned_user.steam_name AS banned_user_name,
    banned_user.steam_id AS banned_user_steam_id,
    banned_user.avatar_url AS banned_user_avatar,
    banned_by.steam_name AS banned_by_name
"""


class DatabaseHandler:
    """
    Eine MySQL-Verbindung pro Arbeitseinheit:

        with DatabaseHandler(cfg) as db:
            with db.transaction():
                ...

    Ausserhalb von transaction() läuft die Verbindung im Autocommit.
    """

    def __init__(self, config: dict):
        self.config = config
        self.conn = None
        self.cursor = None

    def __enter__(self):
        try:
            self.conn = mysql.connector.connect(
                host=self.config["db_host"],
                port=self.config.get("db_port", 3306),
                user=self.config["db_user"],
                password=self.config["db_password"],
                database=self.config["db_database"],
                autocommit=True,
            )
            self.cursor = self.conn.cursor()
        except mysql.connector.Error as error:
            logger.error(f"Fehler bei der Verbindung zur Datenbank: {error}")
            raise
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        try:
            if self.cursor:
                self.cursor.close()
        finally:
            if self.conn:
                self.conn.close()

    @staticmethod
    def is_table_not_found_error(error: Exception) -> bool:
        """
        True, wenn der Fehler von einer fehlenden Tabelle kommt (errno 1146 / SQLSTATE 42S02).
        """
        if getattr(error, "errno", None) == errorcode.ER_NO_SUCH_TABLE:
            return True
        if getattr(error, "sqlstate", None) == "42S02":
            return True
        return "42S02" in str(error)

    @contextmanager
    def transaction(self):
        """
        Commit bei Erfolg, Rollback bei jeder Exception (die Exception wird weitergereicht).
        """
        self.conn.start_transaction()
        try:
            yield self
        except Exception:
            try:
                self.conn.rollback()
            except mysql.connector.Error as rollback_error:
                logger.error(f"Rollback fehlgeschlagen: {rollback_error}")
            raise
        else:
            self.conn.commit()

    # -------------------------
    # server_settings
    # -------------------------
    def create_server_settings_table(self) -> None:
        logger.info("Erstelle Tabelle server_settings, falls sie noch nicht existiert.")
        try:
            self.cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS server_settings (
                    id INT AUTO_INCREMENT PRIMARY KEY,
                    setting_key VARCHAR(100) UNIQUE NOT NULL,
                    setting_value TEXT NULL,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
                    updated_by_user_id INT NULL,
                    INDEX idx_setting_key (setting_key)
                ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci
                """
            )
            # Defaults nur einfügen, bestehende Werte bleiben unangetastet
            for key, value in DEFAULT_SERVER_SETTINGS:
                self.cursor.execute(
                    """
                    INSERT INTO server_settings (setting_key, setting_value) VALUES (%s, %s)
                    ON DUPLICATE KEY UPDATE setting_key = setting_key
                    """,
                    (key, value),
                )
            self.conn.commit()
        except mysql.connector.Error as error:
            logger.error(f"Fehler beim Erstellen der Tabelle server_settings: {error}")
            raise

    def fetch_settings(self, prefix: str) -> dict[str, str]:
        query = "SELECT setting_key, setting_value FROM server_settings WHERE setting_key LIKE %s"
        with self.conn.cursor() as cursor:
            cursor.execute(query, (prefix + "%",))
            return {key: value for key, value in cursor.fetchall()}

    def upsert_setting(self, key: str, value: str, user_id: int | None) -> None:
        query = """
            INSERT INTO server_settings (setting_key, setting_value, updated_by_user_id)
            VALUES (%s, %s, %s)
            ON DUPLICATE KEY UPDATE
                setting_value = VALUES(setting_value),
                updated_by_user_id = VALUES(updated_by_user_id)
        """
        with self.conn.cursor() as cursor:
            cursor.execute(query, (key, value, user_id))

    # -------------------------
    # users
    # -------------------------
    def get_user(self, user_id: int, for_update: bool = False) -> dict | None:
        query = "SELECT * FROM users WHERE id = %s"
        if for_update:
            query += " FOR UPDATE"
        with self.conn.cursor(dictionary=True) as cursor:
            cursor.execute(query, (user_id,))
            return cursor.fetchone()

    def get_user_by_steam_id(self, steam_id: str) -> dict | None:
        with self.conn.cursor(dictionary=True) as cursor:
            cursor.execute("SELECT * FROM users WHERE steam_id = %s LIMIT 1", (steam_id,))
            return cursor.fetchone()

    def create_placeholder_user(self, steam_id: str, steam_name: str) -> int:
        """
        Legt einen User für einen Spieler an, der sich noch nie eingeloggt hat.
        Der Steam-Name wird beim ersten echten Login überschrieben.
        """
        query = "INSERT INTO users (steam_id, steam_name, created_at) VALUES (%s, %s, NOW())"
        with self.conn.cursor() as cursor:
            cursor.execute(query, (steam_id, steam_name))
            return int(cursor.lastrowid)

    def revoke_roles(self, user_id: int, columns: Iterable[str]) -> None:
        columns = list(columns)
        unknown = [c for c in columns if c not in REVOCABLE_ROLE_COLUMNS]
        if unknown:
            raise ValueError(f"Unbekannte Rollen-Spalte(n): {', '.join(unknown)}")
        if not columns:
            return

        assignments = ", ".join(f"{column} = 0" for column in columns)
        with self.conn.cursor() as cursor:
            cursor.execute(f"UPDATE users SET {assignments} WHERE id = %s", (user_id,))

    # -------------------------
    # whitelist_bans
    # -------------------------
    def expire_old_bans(self) -> int:
        query = """
            UPDATE whitelist_bans
            SET is_active = 0
            WHERE is_active = 1
              AND ban_expires IS NOT NULL
              AND ban_expires < NOW()
        """
        with self.conn.cursor() as cursor:
            cursor.execute(query)
            return cursor.rowcount

    def deactivate_active_bans(self, user_id: int) -> int:
        query = "UPDATE whitelist_bans SET is_active = 0 WHERE user_id = %s AND is_active = 1"
        with self.conn.cursor() as cursor:
            cursor.execute(query, (user_id,))
            return cursor.rowcount

    def insert_ban(
        self,
        *,
        user_id: int,
        banned_by_user_id: int,
        ban_type: str,
        reason: str,
        expires_at,
        server_kick: bool,
        server_ban: bool,
    ) -> int:
        query = """
            INSERT INTO whitelist_bans
            (user_id, banned_by_user_id, ban_type, server_kick, server_ban,
             ban_reason, ban_date, ban_expires, is_active)
            VALUES (%s, %s, %s, %s, %s, %s, NOW(), %s, 1)
        """
        with self.conn.cursor() as cursor:
            cursor.execute(
                query,
                (user_id, banned_by_user_id, ban_type, int(server_kick), int(server_ban), reason, expires_at),
            )
            return int(cursor.lastrowid)

    def get_active_ban(self, user_id: int, for_update: bool = False) -> dict | None:
        query = """
            SELECT wb.*,
                   banned_by.steam_name AS banned_by_name,
                   banned_user.steam_name AS banned_user_name,
                   banned_user.steam_id AS banned_user_steam_id
            FROM whitelist_bans wb
            JOIN users banned_by ON wb.banned_by_user_id = banned_by.id
            JOIN users banned_user ON wb.user_id = banned_user.id
            WHERE wb.user_id = %s AND wb.is_active = 1
            ORDER BY wb.ban_date DESC
            LIMIT 1
        """
        if for_update:
            query += " FOR UPDATE"
        with self.conn.cursor(dictionary=True) as cursor:
            cursor.execute(query, (user_id,))
            return cursor.fetchone()

    def mark_ban_revoked(self, ban_id: int, unbanned_by_user_id: int, reason: str) -> int:
        query = """
            UPDATE whitelist_bans
            SET is_active = 0, unbanned_by_user_id = %s, unban_date = NOW(), unban_reason = %s
            WHERE id = %s AND is_active = 1
        """
        with self.conn.cursor() as cursor:
            cursor.execute(query, (unbanned_by_user_id, reason, ban_id))
            return cursor.rowcount

    def get_user_bans(self, user_id: int) -> list[dict]:
        query = """
            SELECT wb.*,
                   banned_by.steam_name AS banned_by_name,
                   unbanned_by.steam_name AS unbanned_by_name
            FROM whitelist_bans wb
            JOIN users banned_by ON wb.banned_by_user_id = banned_by.id
            LEFT JOIN users unbanned_by ON wb.unbanned_by_user_id = unbanned_by.id
            WHERE wb.user_id = %s
            ORDER BY wb.ban_date DESC
        """
        with self.conn.cursor(dictionary=True) as cursor:
            cursor.execute(query, (user_id,))
            return cursor.fetchall()

    def _active_bans_where(self, search: str) -> tuple[str, list]:
        where = "WHERE wb.is_active = 1"
        params: list = []
        if search:
            where += " AND (banned_user.steam_name LIKE %s OR banned_user.steam_id LIKE %s)"
            params = [f"%{search}%", f"%{search}%"]
        return where, params

    def count_active_bans(self, search: str = "") -> int:
        where, params = self._active_bans_where(search)
        query = f"""
            SELECT COUNT(*)
            FROM whitelist_bans wb
            JOIN users banned_user ON wb.user_id = banned_user.id
            {where}
        """
        with self.conn.cursor() as cursor:
            cursor.execute(query, tuple(params))
            result = cursor.fetchone()
            return int(result[0]) if result else 0

    def get_active_bans(self, limit: int, offset: int, search: str = "") -> list[dict]:
        where, params = self._active_bans_where(search)
        query = f"""
            SELECT {_BAN_LIST_COLUMNS}
            FROM whitelist_bans wb
            JOIN users banned_user ON wb.user_id = banned_user.id
            JOIN users banned_by ON wb.banned_by_user_id = banned_by.id
            {where}
            ORDER BY wb.ban_date DESC
            LIMIT %s OFFSET %s
        """
        with self.conn.cursor(dictionary=True) as cursor:
            cursor.execute(query, tuple(params + [limit, offset]))
            return cursor.fetchall()
