"""Filesystem listing, search and guarded file operations."""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_LOCATIONS: dict[str, str] = {
    "downloads": "Downloads",
    "desktop": "Desktop",
    "documents": "Documents",
    "pictures": "Pictures",
    "photos": "Pictures",
    "music": "Music",
    "videos": "Videos",
}

_CATEGORIES: tuple[tuple[str, frozenset[str]], ...] = (
    ("Images", frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".svg"})),
    ("Videos", frozenset({".mp4", ".avi", ".mkv", ".mov", ".wmv", ".flv"})),
    ("Audio", frozenset({".mp3", ".wav", ".flac", ".aac", ".ogg", ".wma"})),
    ("Documents", frozenset({".pdf", ".doc", ".docx", ".txt", ".xlsx", ".pptx", ".csv"})),
    ("Archives", frozenset({".zip", ".rar", ".7z", ".tar", ".gz"})),
    ("Programs", frozenset({".exe", ".msi", ".bat", ".cmd"})),
    ("Code", frozenset({".py", ".cpp", ".h", ".js", ".ts", ".html", ".css"})),
)

_UNITS = ("B", "KB", "MB", "GB", "TB")


class FileOperationError(Exception):
    """A file operation was refused or failed."""


class _Guard(Protocol):
    def validate_file_operation(self, operation: str, path: str) -> tuple[bool, str]: ...

    def log_action(self, action: str, target: str, status: str) -> None: ...


@dataclass
class FileInfo:
    """One directory entry."""

    name: str
    full_path: str
    is_directory: bool = False
    extension: str = ""
    size_bytes: int = 0


def resolve_location(location: str) -> str:
    """Map a well-known folder name (downloads, desktop, ...) to its path."""
    folder = _LOCATIONS.get(location.lower())
    if folder is None:
        return location
    return str(Path.home() / folder)


def format_file_size(size: int) -> str:
    """Human-readable size using binary units up to TB."""
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    precision = 1 if unit > 0 else 0
    return f"{value:.{precision}f} {_UNITS[unit]}"


def get_file_extension(filename: str) -> str:
    """Text from the last dot on, or an empty string."""
    dot = filename.rfind(".")
    return filename[dot:] if dot != -1 else ""


def get_file_category(ext: str) -> str:
    """Broad category for a file extension such as ``.png``."""
    lower = ext.lower()
    for category, extensions in _CATEGORIES:
        if lower in extensions:
            return category
    return "Other"


def _file_info(entry: os.DirEntry[str]) -> FileInfo:
    try:
        is_dir = entry.is_dir()
    except OSError:
        is_dir = False
    size = 0
    if not is_dir:
        try:
            size = entry.stat().st_size
        except OSError:
            size = 0
    return FileInfo(
        name=entry.name,
        full_path=entry.path,
        is_directory=is_dir,
        extension=Path(entry.name).suffix,
        size_bytes=size,
    )


def _walk(directory: str, recursive: bool) -> Iterator[os.DirEntry[str]]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError:
        return
    for entry in entries:
        yield entry
        if recursive:
            try:
                descend = entry.is_dir(follow_symlinks=False)
            except OSError:
                descend = False
            if descend:
                yield from _walk(entry.path, recursive)


class FileManager:
    """File operations checked against a safety guard before they run."""

    def __init__(self, guard: _Guard | None = None) -> None:
        self._guard = guard

    def _check(self, operation: str, path: str) -> None:
        if self._guard is None:
            return
        ok, reason = self._guard.validate_file_operation(operation, path)
        if not ok:
            raise FileOperationError(reason)

    def _log(self, action: str, target: str) -> None:
        if self._guard is not None:
            self._guard.log_action(action, target, "success")

    # ── Listing ─────────────────────────────────────────────────

    def list_files(self, path: str = "", filter: str = "") -> list[FileInfo]:
        """Entries of a directory, directories first then by name."""
        directory = path or str(Path.home())
        if not os.path.isdir(directory):
            return []
        needle = filter.lower()
        match_all = needle in ("", "*", "all")
        result = [
            info
            for info in (_file_info(e) for e in _walk(directory, recursive=False))
            if match_all or needle in info.name.lower()
        ]
        result.sort(key=lambda f: (not f.is_directory, f.name))
        return result

    def list_downloads(self) -> list[FileInfo]:
        """Entries of the Downloads folder."""
        return self.list_files(resolve_location("downloads"))

    def list_desktop(self) -> list[FileInfo]:
        """Entries of the Desktop folder."""
        return self.list_files(resolve_location("desktop"))

    def list_documents(self) -> list[FileInfo]:
        """Entries of the Documents folder."""
        return self.list_files(resolve_location("documents"))

    # ── Operations ──────────────────────────────────────────────

    def copy_file(self, src: str, dst: str) -> str:
        """Copy a file or directory tree; return a confirmation message."""
        self._check("copy", dst)
        src_path, dst_path = Path(src), Path(dst)
        try:
            if src_path.is_dir():
                shutil.copytree(src_path, dst_path, dirs_exist_ok=True)
            else:
                dst_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(src_path, dst_path)
        except OSError as exc:
            raise FileOperationError(f"Copy failed: {exc}") from exc
        self._log("copy", f"{src} -> {dst}")
        return f"Copied: {src_path.name}"

    def move_file(self, src: str, dst: str) -> str:
        """Move a file or directory; return a confirmation message."""
        self._check("move", src)
        try:
            Path(dst).parent.mkdir(parents=True, exist_ok=True)
            os.replace(src, dst)
        except OSError as exc:
            raise FileOperationError(f"Move failed: {exc}") from exc
        self._log("move", f"{src} -> {dst}")
        return f"Moved: {Path(src).name}"

    def rename_file(self, path: str, new_name: str) -> str:
        """Rename an entry within its directory; return a confirmation message."""
        self._check("rename", path)
        old = Path(path)
        try:
            os.replace(old, old.parent / new_name)
        except OSError as exc:
            raise FileOperationError(f"Rename failed: {exc}") from exc
        self._log("rename", f"{path} -> {new_name}")
        return f"Renamed to: {new_name}"

    # ── Search ──────────────────────────────────────────────────

    def search_files(
        self,
        directory: str,
        query: str,
        recursive: bool = True,
        max_results: int = 50,
    ) -> list[FileInfo]:
        """Entries whose name contains ``query`` (case-insensitive)."""
        results: list[FileInfo] = []
        if not os.path.exists(directory) or max_results <= 0:
            return results
        needle = query.lower()
        for entry in _walk(directory, recursive):
            if needle in entry.name.lower():
                results.append(_file_info(entry))
                if len(results) >= max_results:
                    break
        return results

    def organize_by_type(self, path: str) -> dict[str, Any]:
        """Group the file names of a directory by category."""
        organized: dict[str, list[str]] = {}
        for info in self.list_files(path):
            if info.is_directory:
                continue
            organized.setdefault(get_file_category(info.extension), []).append(info.name)
        return organized