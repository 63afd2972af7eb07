"""
Folder mounts: symlinks from Windows paths inside the prefix to game dirs.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from luthier.config import GameConfig
from luthier.paths import PathError, normalize_windows_mount_target, resolve_relative_path

logger = logging.getLogger(__name__)


class MountError(Exception):
    """Error applying a folder mount."""
    pass


class MountStatus(str, Enum):
    PLANNED = "Planned"
    MOUNTED = "Mounted"
    UNCHANGED = "Unchanged"


@dataclass
class MountResult:
    source: Path
    target_windows_path: str
    target_host_path: Path
    status: MountStatus


def windows_target_to_host(effective_prefix: Path, normalized_target: str) -> Path:
    """Map 'X:\\a\\b' to its location under the prefix (drive_c or dosdevices/x:)."""
    drive = normalized_target[0]
    segments = [s for s in normalized_target[3:].split("\\") if s]
    if drive == "C":
        base = effective_prefix / "drive_c"
    else:
        base = effective_prefix / "dosdevices" / f"{drive.lower()}:"
    return base.joinpath(*segments)


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def _prepare_source(game_root: Path, raw: str, create: bool, dry_run: bool) -> Path:
    try:
        source = resolve_relative_path(game_root, raw)
    except PathError as e:
        raise MountError(f"invalid folder mount source '{raw}': {e}") from e

    if not source.exists():
        if not create:
            raise MountError(f"folder mount source does not exist: {source}")
        if not dry_run:
            try:
                source.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise MountError(f"cannot create folder mount source {source}: {e}") from e

    if source.exists():
        source = source.resolve()
        if not _is_within(source, game_root):
            raise MountError(f"folder mount source escapes game root: {source}")
        if not source.is_dir():
            raise MountError(f"folder mount source is not a directory: {source}")
    return source


def _link(target: Path, source: Path) -> MountStatus:
    if target.is_symlink():
        if Path(os.readlink(target)) == source:
            return MountStatus.UNCHANGED
        target.unlink()
    elif target.is_dir():
        shutil.rmtree(target)
    elif target.exists():
        target.unlink()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.symlink_to(source, target_is_directory=True)
    return MountStatus.MOUNTED


def apply_folder_mounts(
    config: GameConfig,
    game_root: Path,
    effective_prefix: Path,
    dry_run: bool,
) -> list[MountResult]:
    """
    Materialize config.folder_mounts as symlinks inside the prefix.

    Args:
        config: Game configuration
        game_root: Game install dir; every source must live inside it
        effective_prefix: Wine prefix (the pfx dir for Proton runtimes)
        dry_run: Plan only, touching nothing on disk

    Returns:
        One MountResult per mount, in configuration order

    Raises:
        MountError: on invalid or duplicate targets, or bad sources
    """
    try:
        root = Path(game_root).resolve(strict=True)
    except OSError as e:
        raise MountError(f"cannot resolve game root {game_root}: {e}") from e

    results: list[MountResult] = []
    seen: set[str] = set()
    for mount in config.folder_mounts:
        try:
            normalized = normalize_windows_mount_target(mount.target_windows_path)
        except PathError as e:
            raise MountError(str(e)) from e
        key = normalized.lower()
        if key in seen:
            raise MountError(f"duplicate folder mount target: {mount.target_windows_path}")
        seen.add(key)

        source = _prepare_source(root, mount.source_relative_path, mount.create_source_if_missing, dry_run)
        target = windows_target_to_host(effective_prefix, normalized)

        if dry_run:
            status = MountStatus.PLANNED
        else:
            try:
                status = _link(target, source)
            except OSError as e:
                raise MountError(f"cannot mount {source} at {target}: {e}") from e

        logger.info("folder mount %s -> %s: %s", normalized, source, status.value)
        results.append(MountResult(
            source=source,
            target_windows_path=normalized,
            target_host_path=target,
            status=status,
        ))
    return results
