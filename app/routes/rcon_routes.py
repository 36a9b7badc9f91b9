# app/routes/rcon_routes.py

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, render_template, request

from app.errors import DashboardError, ValidationError
from app.infrastructure.log_handler import logger
from app.policies.access_policy import ADMIN_ROLE, current_context, require_role
from app.routes.route_helpers import (
    banner_response,
    error_response,
    form_flag,
    form_value,
    outcome_response,
    services,
    wants_json_response,
)
from app.services.service_factory import debug_log_from_config

rcon_bp = Blueprint("rcon", __name__, url_prefix="/admin/rcon")


def _settings_payload(svc) -> dict:
    return {
        **svc.rcon.settings.masked(),
        "library_available": svc.rcon.library_available,
        "usable": svc.rcon.is_usable(),
    }


@rcon_bp.route("", methods=["GET"])
@require_role(ADMIN_ROLE)
def show_settings():
    with services() as svc:
        return jsonify(success=True, settings=_settings_payload(svc))


@rcon_bp.route("", methods=["POST"])
@require_role(ADMIN_ROLE)
def update_settings():
    ctx = current_context()

    # Checkbox: fehlt sie im Formular, ist RCON deaktiviert
    fields = {"enabled": form_flag("rcon_enabled")}
    if "rcon_host" in request.form:
        fields["host"] = form_value("rcon_host")
    if "rcon_port" in request.form:
        fields["port"] = form_value("rcon_port")
    if form_value("rcon_password"):
        fields["password"] = request.form["rcon_password"]

    try:
        with services() as svc:
            settings = svc.settings.update(fields, ctx.actor_id)
    except DashboardError as e:
        return error_response(e)

    return outcome_response(
        {"success": True, "message": "RCON settings updated successfully", "settings": settings.masked()}
    )


@rcon_bp.route("/test", methods=["POST"])
@require_role(ADMIN_ROLE)
def test_connection():
    with services() as svc:
        result = svc.rcon.test_connection()

    if not result["reachable"]:
        if wants_json_response():
            return jsonify(success=False, **result), 502
        return banner_response(result["message"], "error", 502)
    return outcome_response({"success": True, **result})


@rcon_bp.route("/message", methods=["POST"])
@require_role(ADMIN_ROLE)
def send_message():
    text = form_value("message")
    try:
        with services() as svc:
            svc.rcon.send_global_message(text)
    except DashboardError as e:
        return error_response(e)

    logger.info(f"Globale Nachricht gesendet durch User {current_context().actor_id}.")
    return outcome_response({"success": True, "message": "Message sent to all players"})


@rcon_bp.route("/command", methods=["POST"])
@require_role(ADMIN_ROLE)
def execute_command():
    command = form_value("command")
    logger.info(f"RCON-Befehl '{command}' durch User {current_context().actor_id}.")
    try:
        with services() as svc:
            response = svc.rcon.execute_raw_command(command)
    except DashboardError as e:
        return error_response(e)

    return outcome_response({"success": True, "message": "Command executed", "response": response})


# -------------------------
# Debug-Log
# -------------------------
@rcon_bp.route("/debug_log", methods=["GET"])
@require_role(ADMIN_ROLE)
def debug_log():
    sink = debug_log_from_config(current_app.config["APP_CONFIG"])

    tail = request.args.get("tail", type=int)
    content = sink.read_tail(tail) if tail else sink.read_all()
    meta = sink.metadata()

    if wants_json_response():
        return jsonify(success=True, content=content, **meta)
    return render_template("rcon_debug_log.html", content=content, log=meta, message=None)


@rcon_bp.route("/debug_log", methods=["POST"])
@require_role(ADMIN_ROLE)
def clear_debug_log():
    sink = debug_log_from_config(current_app.config["APP_CONFIG"])

    if form_value("action") != "clear":
        return error_response(ValidationError("Unknown action"))

    cleared = sink.clear()
    logger.info(f"RCON-Debuglog geleert durch User {current_context().actor_id}: {cleared}")
    message = "Log cleared successfully" if cleared else "Failed to clear log"

    if wants_json_response():
        return jsonify(success=cleared, message=message), (200 if cleared else 500)
    return render_template(
        "rcon_debug_log.html",
        content=sink.read_all(),
        log=sink.metadata(),
        message={"text": message, "type": "success" if cleared else "error"},
    )
