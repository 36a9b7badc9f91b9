# app/routes/__init__.py

from .players_routes import players_bp
from .ban_routes import bans_bp
from .rcon_routes import rcon_bp

__all__ = ["players_bp", "bans_bp", "rcon_bp"]
