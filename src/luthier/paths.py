"""
Payload path rules.

Paths inside a GameConfig are always relative to the game root and must
never escape it. Folder-mount targets are Windows paths with a drive letter.
"""

from __future__ import annotations

import re
from pathlib import Path


class PathError(Exception):
    """A payload path violates the relative-path or mount-target rules."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


EMPTY_PATH = "EmptyPath"
ABSOLUTE_PATH = "AbsolutePathNotAllowed"
PATH_TRAVERSAL = "PathTraversalNotAllowed"
INVALID_MOUNT_TARGET = "InvalidMountTarget"

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def has_windows_drive_prefix(path: str) -> bool:
    return bool(_DRIVE_PREFIX.match(path))


def normalize_relative_payload_path(raw: str) -> str:
    """
    Normalize a game-root-relative path to forward-slash form.

    Backslashes are accepted as separators, '.' and empty segments are
    dropped. Absolute paths, drive prefixes and '..' segments are rejected.

    Raises:
        PathError: with one of the EmptyPath / AbsolutePathNotAllowed /
            PathTraversalNotAllowed codes
    """
    trimmed = raw.strip()
    if not trimmed:
        raise PathError(EMPTY_PATH, f"path is empty: {raw!r}")

    normalized = trimmed.replace("\\", "/")
    if normalized.startswith("/") or has_windows_drive_prefix(normalized):
        raise PathError(ABSOLUTE_PATH, f"absolute path is not allowed: {raw}")

    parts = []
    for part in normalized.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise PathError(PATH_TRAVERSAL, f"path traversal is not allowed: {raw}")
        parts.append(part)

    if not parts:
        raise PathError(EMPTY_PATH, f"path resolves to empty value: {raw}")
    return "/".join(parts)


def resolve_relative_path(base: Path, raw: str) -> Path:
    return base / normalize_relative_payload_path(raw)


def normalize_windows_mount_target(raw: str) -> str:
    """
    Normalize a folder-mount target to canonical 'X:\\seg\\seg' form.

    Rejects UNC paths, %VAR% expansion, bare drive roots and traversal.
    """
    trimmed = raw.strip()
    if not trimmed:
        raise PathError(INVALID_MOUNT_TARGET, "mount target path is empty")
    if "%" in trimmed:
        raise PathError(INVALID_MOUNT_TARGET, f"mount target cannot contain environment expansion: {raw}")
    if trimmed.startswith("\\\\") or trimmed.startswith("//"):
        raise PathError(INVALID_MOUNT_TARGET, f"UNC mount targets are not supported: {raw}")

    normalized = trimmed.replace("/", "\\")
    if not has_windows_drive_prefix(normalized):
        raise PathError(INVALID_MOUNT_TARGET, f"mount target must use drive letter format (e.g. C:\\foo): {raw}")

    drive = normalized[0].upper()
    segments = []
    for segment in normalized[2:].split("\\"):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise PathError(INVALID_MOUNT_TARGET, f"mount target cannot contain path traversal: {raw}")
        segments.append(segment)

    if not segments:
        raise PathError(INVALID_MOUNT_TARGET, f"mount target must include subpath after drive root: {raw}")
    return f"{drive}:\\" + "\\".join(segments)


def compact_key(exe_hash: str) -> str:
    """Short per-game key: first 12 characters of the hash."""
    trimmed = exe_hash.strip()
    if len(trimmed) > 12:
        return trimmed[:12]
    return trimmed


def sanitize_key(value: str) -> str:
    """Make a string safe for use as a file name."""
    cleaned = re.sub(r"[^A-Za-z0-9_-]", "_", value.strip())
    return cleaned or "unknown"
