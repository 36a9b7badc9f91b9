# tests/test_service_factory.py

from pathlib import Path

from app import ROOT_DIR
from app.services.service_factory import (
    DEFAULT_DEBUG_LOG_PATH,
    PROJECT_ROOT,
    debug_log_from_config,
    open_services,
    rcon_timeout_seconds,
)
from conftest import FakeTransport, transport_factory


def test_project_root_matches_app_root():
    assert PROJECT_ROOT == ROOT_DIR


def test_relative_debug_log_path_resolves_against_project_root(tmp_path, monkeypatch):
    # Arbeitsverzeichnis darf keine Rolle spielen (z.B. gunicorn aus /)
    monkeypatch.chdir(tmp_path)

    assert debug_log_from_config({}).path == PROJECT_ROOT / DEFAULT_DEBUG_LOG_PATH
    assert debug_log_from_config({"rcon_debug_log_path": "var/rcon.log"}).path == PROJECT_ROOT / "var" / "rcon.log"


def test_absolute_debug_log_path_is_kept(tmp_path):
    target = tmp_path / "rcon_debug.log"
    assert debug_log_from_config({"rcon_debug_log_path": str(target)}).path == Path(target)


def test_rcon_timeout_falls_back_to_default():
    assert rcon_timeout_seconds({"rcon_timeout_seconds": "2.5"}) == 2.5
    assert rcon_timeout_seconds({"rcon_timeout_seconds": "soon"}) == 5.0


def test_open_services_closes_rcon_connection(db, tmp_path):
    db.settings.update(
        {"rcon_enabled": "1", "rcon_host": "127.0.0.1", "rcon_port": "2306", "rcon_password": "secret"}
    )
    cfg = {"rcon_debug_log_path": str(tmp_path / "rcon_debug.log")}

    with open_services(cfg, db_factory=db, transport_factory=transport_factory()) as svc:
        svc.rcon.list_players()

    assert FakeTransport.instances[0].closed
