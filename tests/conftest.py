# tests/conftest.py

import copy
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime

import mysql.connector
import pytest

# Logs der Tests nicht ins Projektverzeichnis schreiben
os.environ.setdefault("DASHBOARD_LOG_DIR", tempfile.mkdtemp(prefix="dashboard-logs-"))

from app.infrastructure.rcon_debug_log import RconDebugLog  # noqa: E402
from app.infrastructure.rcon_handler import RconClient, RconSettings  # noqa: E402


STEAM_ID = "76561198000000001"
OTHER_STEAM_ID = "76561198000000002"

PLAYERS_RESPONSE = (
    "Players on server:\n"
    "[#] [IP Address]:[Port] [Ping] [GUID] [Name]\n"
    "--------------------------------------------------\n"
    f"0   10.0.0.5:2304      31   {STEAM_ID}(OK) Alpha\n"
    f"3   10.0.0.9:2304      58   {OTHER_STEAM_ID}(OK) Bravo Two (Lobby)\n"
    "(2 players in total)"
)


class FakeTransport:
    """
    Ersetzt die BattlEye-Session: merkt sich Befehle, liefert vorbereitete Antworten.
    """

    instances = []

    def __init__(self, host, port, password, timeout, *, players=PLAYERS_RESPONSE, fail_on=()):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self.players = players
        self.fail_on = set(fail_on)
        self.commands = []
        self.closed = False
        FakeTransport.instances.append(self)

    def command(self, raw):
        self.commands.append(raw)
        verb = raw.split(" ", 1)[0]
        if verb in self.fail_on:
            raise TimeoutError("timed out")
        if raw == "players":
            return self.players
        return ""

    def close(self):
        self.closed = True


def transport_factory(**options):
    def factory(host, port, password, timeout):
        return FakeTransport(host, port, password, timeout, **options)

    return factory


def failing_factory(host, port, password, timeout):
    raise ConnectionRefusedError("connection refused")


def usable_settings():
    return RconSettings(enabled=True, host="127.0.0.1", port=2306, password="secret")


@pytest.fixture(autouse=True)
def _reset_transports():
    FakeTransport.instances.clear()
    yield
    FakeTransport.instances.clear()


@pytest.fixture
def debug_log(tmp_path):
    return RconDebugLog(tmp_path / "rcon_debug.log")


@pytest.fixture
def rcon(debug_log):
    return RconClient(usable_settings(), transport_factory=transport_factory(), debug_log=debug_log)


def db_error(message="database went away", errno=2013):
    return mysql.connector.errors.DatabaseError(msg=message, errno=errno)


class FakeDatabase:
    """
    In-Memory-Gegenstück zu DatabaseHandler mit echtem Rollback-Verhalten.
    fail_on: Methodennamen, die einen MySQL-Fehler werfen.
    """

    def __init__(self):
        self.users = {}
        self.bans = []
        self.settings = {}
        self.settings_table_exists = True
        self.fail_on = set()
        self.commits = 0
        self.rollbacks = 0
        self._next_user_id = 1

    # Verwendung als DB_FACTORY: with factory(cfg) as db
    def __call__(self, config):
        return self

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        return False

    def _check(self, name):
        if name in self.fail_on:
            raise db_error(f"{name} failed")

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy((self.users, self.bans, self.settings, self._next_user_id))
        try:
            yield self
        except Exception:
            self.users, self.bans, self.settings, self._next_user_id = snapshot
            self.rollbacks += 1
            raise
        else:
            self.commits += 1

    # --- helpers for tests ---
    def add_user(self, steam_id, name="Player", **roles):
        user_id = self._next_user_id
        self._next_user_id += 1
        self.users[user_id] = {
            "id": user_id,
            "steam_id": steam_id,
            "steam_name": name,
            "avatar_url": None,
            "role_all": 0,
            "role_admin": 0,
            "role_s3": 1,
            "role_cas": 1,
            **roles,
        }
        return user_id

    def active_bans_for(self, user_id):
        return [b for b in self.bans if b["user_id"] == user_id and b["is_active"]]

    # --- server_settings ---
    def create_server_settings_table(self):
        self.settings_table_exists = True

    def fetch_settings(self, prefix):
        self._check("fetch_settings")
        if not self.settings_table_exists:
            raise mysql.connector.errors.ProgrammingError(
                msg="Table 'dashboard.server_settings' doesn't exist", errno=1146, sqlstate="42S02"
            )
        return {k: v for k, v in self.settings.items() if k.startswith(prefix)}

    def upsert_setting(self, key, value, user_id):
        self._check("upsert_setting")
        self._check(f"upsert_setting:{key}")
        self.settings[key] = value

    # --- users ---
    def get_user(self, user_id, for_update=False):
        self._check("get_user")
        user = self.users.get(user_id)
        return dict(user) if user else None

    def get_user_by_steam_id(self, steam_id):
        self._check("get_user_by_steam_id")
        for user in self.users.values():
            if user["steam_id"] == steam_id:
                return dict(user)
        return None

    def create_placeholder_user(self, steam_id, steam_name):
        self._check("create_placeholder_user")
        return self.add_user(steam_id, steam_name, role_s3=0, role_cas=0)

    def revoke_roles(self, user_id, columns):
        self._check("revoke_roles")
        for column in columns:
            self.users[user_id][column] = 0

    # --- whitelist_bans ---
    def expire_old_bans(self):
        self._check("expire_old_bans")
        now = datetime.now()
        expired = 0
        for ban in self.bans:
            if ban["is_active"] and ban["ban_expires"] is not None and ban["ban_expires"] < now:
                ban["is_active"] = 0
                expired += 1
        return expired

    def deactivate_active_bans(self, user_id):
        count = 0
        for ban in self.active_bans_for(user_id):
            ban["is_active"] = 0
            count += 1
        return count

    def insert_ban(self, *, user_id, banned_by_user_id, ban_type, reason, expires_at, server_kick, server_ban):
        self._check("insert_ban")
        ban = {
            "id": len(self.bans) + 1,
            "user_id": user_id,
            "banned_by_user_id": banned_by_user_id,
            "ban_type": ban_type,
            "server_kick": int(server_kick),
            "server_ban": int(server_ban),
            "ban_reason": reason,
            "ban_date": datetime.now(),
            "ban_expires": expires_at,
            "is_active": 1,
            "unbanned_by_user_id": None,
            "unban_date": None,
            "unban_reason": None,
        }
        self.bans.append(ban)
        return ban["id"]

    def _with_names(self, ban):
        row = dict(ban)
        user = self.users.get(ban["user_id"], {})
        row["banned_user_name"] = user.get("steam_name")
        row["banned_user_steam_id"] = user.get("steam_id")
        return row

    def get_active_ban(self, user_id, for_update=False):
        self._check("get_active_ban")
        active = self.active_bans_for(user_id)
        return self._with_names(active[-1]) if active else None

    def mark_ban_revoked(self, ban_id, unbanned_by_user_id, reason):
        self._check("mark_ban_revoked")
        for ban in self.bans:
            if ban["id"] == ban_id and ban["is_active"]:
                ban.update(
                    is_active=0,
                    unbanned_by_user_id=unbanned_by_user_id,
                    unban_date=datetime.now(),
                    unban_reason=reason,
                )
                return 1
        return 0

    def get_user_bans(self, user_id):
        self._check("get_user_bans")
        return [self._with_names(b) for b in reversed(self.bans) if b["user_id"] == user_id]

    def _search(self, search):
        rows = [self._with_names(b) for b in reversed(self.bans) if b["is_active"]]
        if search:
            needle = search.lower()
            rows = [
                r for r in rows
                if needle in (r["banned_user_name"] or "").lower() or needle in (r["banned_user_steam_id"] or "")
            ]
        return rows

    def count_active_bans(self, search=""):
        self._check("count_active_bans")
        return len(self._search(search))

    def get_active_bans(self, limit, offset, search=""):
        return self._search(search)[offset:offset + limit]


@pytest.fixture
def db():
    return FakeDatabase()
