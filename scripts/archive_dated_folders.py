"""
Archive dated folders (named ``YYYYMMDD``) that are older than a retention window.

Each eligible folder is zipped into a hidden scratch folder on the compress
drive first, so the compression I/O stays local even when the destination is
a network share. The finished ``{app}-{folder}.zip`` is then moved to the
destination and the source folder is deleted only once the archive is
confirmed there.
"""

from __future__ import annotations

import argparse
import os
import re
import shutil
import subprocess
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional

from daily_log import DEFAULT_LOG_FOLDER, DailyLog, LogLevel
from tqdm import tqdm


DATE_FORMAT = "%Y%m%d"
DEFAULT_KEEP_DAYS = 14
COMPRESS_DIR_NAME = ".archive_compress"
DATE_NAME_RE = re.compile(r"\d{8}")


@dataclass(frozen=True)
class DatedFolder:
    path: Path
    name: str
    last_write_date: date


@dataclass
class ArchiveSummary:
    eligible: int = 0
    archived: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Optional[str] = None


def parse_folder_date(name: str) -> date:
    """Parse an exact ``YYYYMMDD`` folder name; raise ``ValueError`` otherwise."""
    # strptime alone accepts short forms such as "2020111".
    if not DATE_NAME_RE.fullmatch(name):
        raise ValueError(f"Folder name is not an exact YYYYMMDD date: {name!r}")
    return datetime.strptime(name, DATE_FORMAT).date()


def last_write_date(path: Path) -> date:
    stamp = datetime.fromtimestamp(path.stat().st_mtime).strftime(DATE_FORMAT)
    return datetime.strptime(stamp, DATE_FORMAT).date()


def list_dated_folders(source: Path) -> Iterable[DatedFolder]:
    for child in source.iterdir():
        if not child.is_dir():
            continue
        try:
            parse_folder_date(child.name)
        except ValueError:
            continue
        yield DatedFolder(child, child.name, last_write_date(child))


def select_expired(folders: Iterable[DatedFolder], keep_days: int, today: Optional[date] = None) -> List[DatedFolder]:
    cutoff = (today or date.today()) - timedelta(days=keep_days)
    return [folder for folder in folders if folder.last_write_date < cutoff]


def default_compress_drive(source: Path) -> Path:
    """Drive root of ``source`` on Windows, ``source`` itself elsewhere.

    The scratch folder name is not a date, so it never qualifies for archiving.
    """
    resolved = Path(source).resolve()
    if os.name == "nt" and resolved.drive:
        return Path(resolved.anchor)
    return resolved


def ensure_compress_dir(compress_drive: Path) -> Path:
    compress_dir = Path(compress_drive) / COMPRESS_DIR_NAME
    if not compress_dir.is_dir():
        compress_dir.mkdir(parents=True, exist_ok=True)
        if os.name == "nt":
            subprocess.check_call(["attrib", "+h", str(compress_dir)])
    return compress_dir


def compress_folder(folder: Path, archive_path: Path) -> Path:
    try:
        with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED, compresslevel=1) as zf:
            for item in sorted(folder.rglob("*")):
                zf.write(item, item.relative_to(folder))
    except Exception:
        archive_path.unlink(missing_ok=True)
        raise
    return archive_path


def relocate_archive(archive_path: Path, destination: Path) -> Path:
    target = destination / archive_path.name
    if target.exists():
        target.unlink()
    shutil.move(str(archive_path), str(target))
    return target


def archive_folder(folder: DatedFolder, destination: Path, app_name: str, compress_dir: Path, log: DailyLog) -> bool:
    """Archive one folder; return True when the source was removed."""
    archive_name = f"{app_name}-{folder.name}.zip"
    log.info(f"Compressing {folder.path} -> {compress_dir / archive_name}")
    archive_path = compress_folder(folder.path, compress_dir / archive_name)

    log.info(f"Moving {archive_path.name} to {destination}")
    target = relocate_archive(archive_path, destination)

    if not target.is_file():
        log.warn(f"Archive {target} not found after move; leaving {folder.path} in place")
        return False
    shutil.rmtree(folder.path)
    log.info(f"Removed {folder.path}")
    return True


def archive_folders(
    source: Path,
    destination: Path,
    app_name: str,
    log: DailyLog,
    *,
    keep_days: int = DEFAULT_KEEP_DAYS,
    compress_drive: Optional[Path] = None,
    dry_run: bool = False,
) -> ArchiveSummary:
    summary = ArchiveSummary()
    log.entry(f"Archiving {source} -> {destination} (keep {keep_days} day(s))", LogLevel.START)
    try:
        expired = select_expired(list_dated_folders(Path(source)), keep_days)
        summary.eligible = len(expired)
        log.info(f"Found {len(expired)} folder(s) older than {keep_days} day(s)")

        if dry_run:
            for folder in expired:
                log.info(f"Would archive {folder.path}")
        elif expired:
            compress_dir = ensure_compress_dir(compress_drive or default_compress_drive(source))
            with tqdm(total=len(expired), desc=app_name, unit="folder") as progress:
                for folder in expired:
                    if archive_folder(folder, Path(destination), app_name, compress_dir, log):
                        summary.archived.append(folder.name)
                    else:
                        summary.skipped.append(folder.name)
                    progress.update(1)
    except Exception as exc:
        summary.failed = str(exc)
        log.exception("Archiving aborted")
        return summary

    log.entry(
        f"Archived {len(summary.archived)} folder(s), left {len(summary.skipped)} in place",
        LogLevel.END,
    )
    return summary


def existing_dir(value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_dir():
        raise argparse.ArgumentTypeError(f"Folder not found: {value}")
    return path


def non_negative_int(value: str) -> int:
    days = int(value)
    if days < 0:
        raise argparse.ArgumentTypeError(f"Expected a value >= 0, got {value}")
    return days


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Zip and remove dated folders older than a retention window")
    parser.add_argument("--source", required=True, type=existing_dir, help="Folder containing YYYYMMDD subfolders")
    parser.add_argument("--destination", required=True, type=existing_dir, help="Folder receiving the zip archives")
    parser.add_argument("--app-name", required=True, help="Archive name prefix and log name")
    parser.add_argument(
        "--keep-days",
        type=non_negative_int,
        default=DEFAULT_KEEP_DAYS,
        help=f"Retention window in days (default: {DEFAULT_KEEP_DAYS})",
    )
    parser.add_argument(
        "--compress-drive",
        type=existing_dir,
        help="Drive or folder for the hidden scratch folder (default: drive of --source)",
    )
    parser.add_argument("--log-folder", type=existing_dir, default=DEFAULT_LOG_FOLDER, help="Root folder for log files")
    parser.add_argument("--dry-run", action="store_true", help="Only list the folders that would be archived")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    log = DailyLog(args.log_folder, args.app_name)
    archive_folders(
        args.source,
        args.destination,
        args.app_name,
        log,
        keep_days=args.keep_days,
        compress_drive=args.compress_drive,
        dry_run=args.dry_run,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
