# app/routes/ban_routes.py

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.errors import DashboardError
from app.policies.access_policy import ADMIN_ROLE, current_context, require_role
from app.policies.ban_policy import parse_duration_hours
from app.routes.route_helpers import error_response, form_flag, form_value, outcome_response, services

bans_bp = Blueprint("bans", __name__)


def _int_arg(key: str, default: int) -> int:
    try:
        return int(request.args.get(key, default))
    except (TypeError, ValueError):
        return default


@bans_bp.route("/bans", methods=["GET"])
@require_role(ADMIN_ROLE)
def list_bans():
    cfg = current_app.config["APP_CONFIG"]
    per_page = int(cfg.get("bans_per_page", 20))

    try:
        with services() as svc:
            result = svc.bans.get_all_bans(
                page=_int_arg("page", 1),
                per_page=per_page,
                search=request.args.get("search", ""),
            )
    except DashboardError as e:
        return error_response(e)

    return jsonify(success=True, **result)


@bans_bp.route("/bans/<int:user_id>", methods=["GET"])
@require_role(ADMIN_ROLE)
def user_bans(user_id: int):
    try:
        with services() as svc:
            active = svc.bans.is_user_banned(user_id)
            history = svc.bans.get_user_bans(user_id)
    except DashboardError as e:
        return error_response(e)

    return jsonify(success=True, banned=active is not None, active_ban=active, bans=history)


@bans_bp.route("/bans/<int:user_id>", methods=["POST"])
@require_role(ADMIN_ROLE)
def issue_ban(user_id: int):
    ctx = current_context()

    try:
        expires_at = parse_duration_hours(form_value("ban_duration", "indefinite"))
        with services() as svc:
            outcome = svc.bans.issue_ban(
                user_id,
                ctx.actor_id,
                form_value("ban_type", "BOTH"),
                reason=form_value("reason"),
                expires_at=expires_at,
                also_kick=form_flag("server_kick"),
                also_server_ban=form_flag("server_ban"),
            )
    except DashboardError as e:
        return error_response(e)

    return outcome_response(outcome.to_json())


@bans_bp.route("/bans/<int:user_id>/unban", methods=["POST"])
@require_role(ADMIN_ROLE)
def revoke_ban(user_id: int):
    ctx = current_context()

    try:
        with services() as svc:
            outcome = svc.bans.revoke_ban(user_id, ctx.actor_id, form_value("reason"))
    except DashboardError as e:
        return error_response(e)

    return outcome_response(outcome.to_json())
