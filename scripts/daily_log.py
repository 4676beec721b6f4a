"""
Append-only daily log files shared by the archive and deployment scripts.

Each logical log gets its own folder tree keyed by year and month, and one
file per day:

    {log_folder}/{log_name}/{yyyy}/{MM}/{log_name}-{yyyyMMdd}.log

The first write of the day creates the file with a short banner. Every entry
is echoed to the console through ``tqdm.write`` so it stays readable while a
progress bar is active.
"""

from __future__ import annotations

import socket
import traceback
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from tqdm import tqdm


DEFAULT_LOG_FOLDER = Path("logs")
BANNER_RULE = "*" * 72


class LogLevel(str, Enum):
    INFO = "Info"
    ERROR = "Error"
    WARN = "Warn"
    START = "Start"
    END = "End"


def timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%x %X")


def format_entry(message: str, level: LogLevel, now: Optional[datetime] = None) -> str:
    return f"[{level.value}][{timestamp(now)}] {message}"


@dataclass(frozen=True)
class DailyLog:
    log_folder: Path
    log_name: str

    def path_for(self, day: datetime) -> Path:
        return (
            Path(self.log_folder)
            / self.log_name
            / day.strftime("%Y")
            / day.strftime("%m")
            / f"{self.log_name}-{day.strftime('%Y%m%d')}.log"
        )

    def _ensure_file(self, path: Path, now: datetime) -> None:
        if path.exists():
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        banner = [
            BANNER_RULE,
            f"Log created : {timestamp(now)}",
            f"Host        : {socket.gethostname()}",
            f"Path        : {path.resolve()}",
            BANNER_RULE,
        ]
        path.write_text("\n".join(banner) + "\n", encoding="utf-8")

    def entry(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        now = datetime.now()
        path = self.path_for(now)
        self._ensure_file(path, now)
        line = format_entry(message, level, now)
        with path.open("a", encoding="utf-8") as fh:
            # Blank line keeps separate runs apart within one daily file.
            if level is LogLevel.START:
                fh.write("\n")
            fh.write(line + "\n")
        tqdm.write(line)

    def info(self, message: str) -> None:
        self.entry(message, LogLevel.INFO)

    def warn(self, message: str) -> None:
        self.entry(message, LogLevel.WARN)

    def error(self, message: str) -> None:
        self.entry(message, LogLevel.ERROR)

    def exception(self, message: str) -> None:
        """Log ``message`` at Error level followed by the active traceback."""
        detail = traceback.format_exc().rstrip()
        self.entry(f"{message}\n{detail}", LogLevel.ERROR)
