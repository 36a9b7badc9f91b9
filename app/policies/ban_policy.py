# app/policies/ban_policy.py

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta
from enum import Enum

from app.errors import ValidationError

# Steam ID64 hat immer 17 Stellen
STEAM_ID64_LENGTH = 17
_STEAM_ID64_RE = re.compile(r"^\d{%d}$" % STEAM_ID64_LENGTH)

INDEFINITE = "indefinite"


class BanScope(str, Enum):
    """
    Whitelist-Ban-Typen. BOTH = ganze Whitelist, S3 / CAS = Teil-Whitelist.
    """

    BOTH = "BOTH"
    S3 = "S3"
    CAS = "CAS"


# Welche Rollen-Spalten ein Ban entzieht
SCOPE_ROLE_COLUMNS = {
    BanScope.BOTH: ("role_s3", "role_cas"),
    BanScope.S3: ("role_s3",),
    BanScope.CAS: ("role_cas",),
}


def is_steam_id64(value: str) -> bool:
    return bool(_STEAM_ID64_RE.match((value or "").strip()))


def parse_ban_scope(value) -> BanScope:
    if isinstance(value, BanScope):
        return value
    raw = (value or "").strip().upper()
    try:
        return BanScope(raw)
    except ValueError:
        raise ValidationError("Invalid ban type") from None


def role_columns_for(scope: BanScope) -> tuple[str, ...]:
    return SCOPE_ROLE_COLUMNS[scope]


def is_protected_user(user: dict) -> bool:
    """
    Staff (ALL-Flag) darf nie whitelist-gebannt werden.
    """
    return bool(user.get("role_all"))


def parse_duration_hours(value, now: datetime | None = None) -> datetime | None:
    """
    Formularwert -> Ablaufzeitpunkt.
      "indefinite" / leer -> None (unbefristet)
      "24"               -> jetzt + 24h
    """
    raw = str(value if value is not None else "").strip().lower()
    if not raw or raw == INDEFINITE:
        return None
    try:
        hours = int(raw)
    except ValueError:
        raise ValidationError("Invalid ban duration") from None
    if hours <= 0:
        raise ValidationError("Ban duration must be a positive number of hours")
    return (now or datetime.now()) + timedelta(hours=hours)


def server_ban_minutes(expires_at: datetime | None, now: datetime | None = None) -> int:
    """
    Dauer für den Gameserver-Ban in ganzen Minuten (aufgerundet). 0 = permanent.
    """
    if expires_at is None:
        return 0
    remaining = (expires_at - (now or datetime.now())).total_seconds()
    return max(1, math.ceil(remaining / 60))


def placeholder_name(steam_id: str) -> str:
    # Letzte 6 Stellen der Steam-ID zur Identifikation
    return "Guest#" + steam_id[-6:]
