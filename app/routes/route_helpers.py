# app/routes/route_helpers.py

from __future__ import annotations

from contextlib import contextmanager

from flask import current_app, jsonify, render_template, request

from app.errors import DashboardError
from app.infrastructure.database_handler import DatabaseHandler
from app.infrastructure.rcon_handler import DEFAULT_TRANSPORT_FACTORY
from app.services.service_factory import open_services

# Fehlerart -> HTTP-Status
STATUS_BY_KIND = {
    "validation": 400,
    "resolution": 404,
    "persistence": 500,
    "transport": 502,
    "configuration": 503,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def wants_json_response() -> bool:
    """
    AJAX-Erkennung: X-Requested-With (fetch / XMLHttpRequest) oder JSON im Accept-Header.
    """
    xrw = (request.headers.get("X-Requested-With") or "").lower()
    if xrw in ("fetch", "xmlhttprequest"):
        return True

    accept = (request.headers.get("Accept") or "").lower()
    return "application/json" in accept


def form_value(key: str, default: str = "") -> str:
    return (request.form.get(key) or default).strip()


def form_flag(key: str) -> bool:
    return form_value(key).lower() in _TRUE_VALUES


def _is_browser_form_post() -> bool:
    return request.method == "POST" and not wants_json_response()


def _back_url() -> str | None:
    # Nur auf Seiten der eigenen App zurückverlinken
    referrer = request.referrer or ""
    return referrer if referrer.startswith(request.host_url) else None


def banner_response(text: str, kind: str = "success", status: int = 200, details: str | None = None):
    """
    HTML-Variante für klassische Formular-POSTs: Meldung als Banner (Jinja escaped).
    """
    page = render_template(
        "action_result.html",
        message={"text": text, "type": kind},
        details=details,
        back_url=_back_url(),
    )
    return page, status


def outcome_response(payload: dict):
    """
    Erfolgsantwort eines POSTs: JSON für fetch/AJAX, sonst Banner.
    """
    if _is_browser_form_post():
        text = payload.get("message", "")
        kind = "warning" if "Warning:" in text else "success"
        return banner_response(text, kind, details=payload.get("response"))
    return jsonify(payload)


def error_response(error: DashboardError):
    status = STATUS_BY_KIND.get(error.kind, 400)
    if _is_browser_form_post():
        return banner_response(error.message, "error", status)
    return jsonify(success=False, error=error.message), status


@contextmanager
def services():
    """
    Services für den aktuellen Request. DB- und Transport-Factory lassen sich
    über die App-Config austauschen (Tests).
    """
    cfg = current_app.config["APP_CONFIG"]
    with open_services(
        cfg,
        db_factory=current_app.config.get("DB_FACTORY", DatabaseHandler),
        transport_factory=current_app.config.get("RCON_TRANSPORT_FACTORY", DEFAULT_TRANSPORT_FACTORY),
    ) as svc:
        yield svc
