# app/infrastructure/log_handler.py
import logging
import os
from datetime import datetime

# Zentraler Logger für das Dashboard
logger = logging.getLogger("whitelist_dashboard")

# Mehrfach-Imports dürfen keine Handler doppelt hinzufügen,
# propagate = False verhindert doppelte Ausgaben über den Root-Logger
logger.propagate = False


def _log_level() -> int:
    name = (os.environ.get("DASHBOARD_LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_logger_once() -> None:
    """
    Richtet Handler nur einmal ein (idempotent).
    Log-Verzeichnis kommt aus DASHBOARD_LOG_DIR (Default: logs).
    """
    if getattr(logger, "_dashboard_configured", False):
        return

    level = _log_level()
    logger.setLevel(level)

    log_dir = os.environ.get("DASHBOARD_LOG_DIR") or "logs"
    os.makedirs(log_dir, exist_ok=True)

    fmt = logging.Formatter(
        "%(asctime)s %(levelname)s [%(module)s]: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Tageslogfile
    log_filename = datetime.now().strftime("%Y-%m-%d") + "_dashboard.log"
    file_handler = logging.FileHandler(os.path.join(log_dir, log_filename), encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(fmt)

    # Konsole
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(fmt)

    # Fehlerlog (nur ERROR und höher)
    error_handler = logging.FileHandler(os.path.join(log_dir, "errors.log"), encoding="utf-8")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(fmt)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.addHandler(error_handler)

    logger._dashboard_configured = True


# Sofort beim Import konfigurieren (aber nur einmal)
_configure_logger_once()
