# app/routes/players_routes.py

from __future__ import annotations

from flask import Blueprint, jsonify

from app.errors import DashboardError
from app.infrastructure.log_handler import logger
from app.policies.access_policy import ADMIN_ROLE, current_context, require_role
from app.routes.route_helpers import error_response, form_flag, form_value, outcome_response, services

players_bp = Blueprint("players", __name__)


@players_bp.route("/active_players", methods=["GET"])
@require_role(ADMIN_ROLE)
def active_players():
    with services() as svc:
        rcon_enabled = svc.rcon.is_usable()
        if not rcon_enabled:
            return jsonify(success=True, rcon_enabled=False, players=[])

        try:
            players = svc.bans.enrich_players(svc.rcon.list_players())
        except DashboardError as e:
            return error_response(e)

    return jsonify(success=True, rcon_enabled=True, players=players)


@players_bp.route("/active_players/kick", methods=["POST"])
@require_role(ADMIN_ROLE)
def kick_player():
    steam_id = form_value("steam_id")
    reason = form_value("reason")
    logger.info(f"Kick angefordert für {steam_id} durch User {current_context().actor_id}.")

    try:
        with services() as svc:
            outcome = svc.bans.kick_player(steam_id, reason)
    except DashboardError as e:
        return error_response(e)

    return outcome_response(outcome.to_json())


@players_bp.route("/active_players/ban", methods=["POST"])
@require_role(ADMIN_ROLE)
def ban_player():
    ctx = current_context()

    try:
        with services() as svc:
            outcome = svc.bans.ban_online_player(
                form_value("steam_id"),
                ctx.actor_id,
                ban_scope=form_value("ban_type", "BOTH"),
                reason=form_value("reason"),
                duration_hours=form_value("ban_duration", "indefinite"),
                also_kick=form_flag("server_kick"),
                also_server_ban=form_flag("server_ban"),
            )
    except DashboardError as e:
        return error_response(e)

    return outcome_response(outcome.to_json())
