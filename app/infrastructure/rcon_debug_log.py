# app/infrastructure/rcon_debug_log.py

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from .log_handler import logger

LOG_MISSING_SENTINEL = "Log file does not exist yet."
SEPARATOR = "-" * 80


class RconDebugLog:
    """
    Append-only Diagnose-Datei für den RCON-Verkehr (Verbindungsversuche + Befehle).
    Schreibfehler werden nur geloggt, nie an den Aufrufer weitergegeben.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def append(self, message: str, payload: dict[str, Any] | None = None) -> None:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        block = [f"[{timestamp}] {message}"]
        if payload:
            block.append(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        block.append(SEPARATOR)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write("\n".join(block) + "\n")
        except OSError as e:
            logger.warning(f"RCON-Debuglog konnte nicht geschrieben werden ({self.path}): {e}")

    def exists(self) -> bool:
        return self.path.is_file()

    def read_all(self) -> str:
        if not self.exists():
            return LOG_MISSING_SENTINEL
        return self.path.read_text(encoding="utf-8", errors="replace")

    def read_tail(self, lines: int) -> str:
        if not self.exists():
            return LOG_MISSING_SENTINEL
        if lines <= 0:
            return ""
        content = self.path.read_text(encoding="utf-8", errors="replace").splitlines()
        return "\n".join(content[-lines:])

    def clear(self) -> bool:
        """
        Löscht die Datei. True auch dann, wenn sie nie existiert hat.
        """
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.error(f"RCON-Debuglog konnte nicht gelöscht werden ({self.path}): {e}")
            return False
        logger.info("RCON-Debuglog gelöscht.")
        return True

    def metadata(self) -> dict[str, Any]:
        exists = self.exists()
        size = self.path.stat().st_size if exists else 0
        return {
            "path": str(self.path),
            "exists": exists,
            "size": size,
            "size_formatted": f"{size / 1024:.2f} KB",
        }
