"""
Windows registry overlay codec.

Renders .reg documents from the configured registry keys and from the
winecfg settings, and imports them through regedit for the selected runtime.
Each import is skipped when the rendered content matches the hash recorded
by the last successful import.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from luthier.config import (
    DllOverrideRule,
    FeatureState,
    GameConfig,
    RegistryKey,
    RuntimeCandidate,
    VirtualDesktopConfig,
    WineDesktopFolderMapping,
    WineDriveMapping,
    WinecfgConfig,
    WinecfgFeaturePolicy,
)
from luthier.doctor import DoctorReport
from luthier.host import HostEnvironment
from luthier.launch import LaunchError, compose_runtime_env, runtime_program, selected_runtime, wine_tool
from luthier.paths import PathError, resolve_relative_path
from luthier.process import CommandResult, ExternalCommand, SkipReason, StepStatus, execute_command
from luthier.runtime_env import effective_prefix_path

logger = logging.getLogger(__name__)

REG_HEADER = "Windows Registry Editor Version 5.00\r\n\r\n"
REGEDIT_TIMEOUT_SECS = 120

REGISTRY_MARKER = ".luthier_registry.sha256"
WINECFG_MARKER = ".luthier_winecfg.sha256"

WINE_KEY = r"HKEY_CURRENT_USER\Software\Wine"
X11_KEY = r"HKEY_CURRENT_USER\Software\Wine\X11 Driver"
MIME_KEY = r"HKEY_CURRENT_USER\Software\Wine\FileOpenAssociations"
EXPLORER_KEY = r"HKEY_CURRENT_USER\Software\Wine\Explorer"
DESKTOPS_KEY = r"HKEY_CURRENT_USER\Software\Wine\Explorer\Desktops"
DESKTOP_KEY = r"HKEY_CURRENT_USER\Control Panel\Desktop"
DLL_OVERRIDES_KEY = r"HKEY_CURRENT_USER\Software\Wine\DllOverrides"
USER_SHELL_FOLDERS_KEY = r"HKEY_CURRENT_USER\Software\Microsoft\Windows\CurrentVersion\Explorer\User Shell Folders"
SHELL_FOLDERS_KEY = r"HKEY_CURRENT_USER\Software\Microsoft\Windows\CurrentVersion\Explorer\Shell Folders"
DRIVERS_KEY = r"HKEY_CURRENT_USER\Software\Wine\Drivers"
DRIVES_KEY = r"HKEY_LOCAL_MACHINE\Software\Wine\Drives"

DESKTOP_FOLDER_NAMES = {
    "desktop": "Desktop",
    "documents": "Personal",
    "downloads": "{374DE290-123F-4565-9164-39C4925E467B}",
    "music": "My Music",
    "pictures": "My Pictures",
    "videos": "My Video",
}

AUDIO_DRIVERS = {
    "pipewire": "winepulse.drv",
    "pulseaudio": "winepulse.drv",
    "alsa": "winealsa.drv",
}

DRIVE_TYPES = {
    "local_disk": "hd",
    "network_share": "network",
    "floppy": "floppy",
    "cdrom": "cdrom",
}


class RegistryError(Exception):
    """Error preparing or importing a registry overlay."""
    pass


# --- .reg rendering ---

def escape_reg_string(raw: str) -> str:
    return raw.replace("\\", "\\\\").replace('"', '\\"')


def _value_name(name: str) -> str:
    return "@" if name == "@" else f'"{escape_reg_string(name)}"'


def _hex_list(raw: str) -> str:
    return ",".join(chunk.strip() for chunk in raw.split(",") if chunk.strip())


def render_registry_value(key: RegistryKey) -> Optional[str]:
    """One `name=value` line, or None for an unsupported value type."""
    value_type = key.value_type.strip().upper()
    raw = key.value.strip()

    if value_type == "REG_SZ":
        rendered = f'"{escape_reg_string(raw)}"'
    elif value_type == "REG_DWORD":
        value = raw[2:] if raw.lower().startswith("0x") else raw
        rendered = f"dword:{value.lower()}"
    elif value_type == "REG_BINARY":
        rendered = f"hex:{_hex_list(raw)}"
    elif value_type == "REG_MULTI_SZ":
        rendered = f"hex(7):{_hex_list(raw)}"
    elif value_type == "REG_EXPAND_SZ":
        rendered = f"hex(2):{_hex_list(raw)}"
    elif value_type == "REG_QWORD":
        rendered = f"hex(b):{_hex_list(raw)}"
    else:
        return None
    return f"{_value_name(key.name)}={rendered}"


def render_registry_file(entries: Sequence[RegistryKey]) -> str:
    """
    Render registry keys as a .reg document.

    One section per distinct path in first-appearance order; values of
    unsupported types are dropped from the output.
    """
    sections: dict[str, list[str]] = {}
    for entry in entries:
        lines = sections.setdefault(entry.path, [])
        line = render_registry_value(entry)
        if line is not None:
            lines.append(line)

    blocks = []
    for path, lines in sections.items():
        blocks.append("".join(f"{line}\r\n" for line in [f"[{path}]", *lines]))
    return REG_HEADER + "\r\n".join(blocks)


@dataclass
class RegMutation:
    """A value to set (string or dword) or delete (value None)."""
    name: str
    value: Optional[str | int] = None

    def render(self) -> str:
        if self.value is None:
            rendered = "-"
        elif isinstance(self.value, int):
            rendered = f"dword:{self.value:08x}"
        else:
            rendered = f'"{escape_reg_string(self.value)}"'
        return f"{_value_name(self.name)}={rendered}"


@dataclass
class RegOverlay:
    """Registry mutations grouped by key path."""
    sections: dict[str, list[RegMutation]] = field(default_factory=dict)

    def set(self, path: str, name: str, value: str | int) -> None:
        self.sections.setdefault(path, []).append(RegMutation(name, value))

    def delete(self, path: str, name: str) -> None:
        self.sections.setdefault(path, []).append(RegMutation(name, None))

    def render(self) -> Optional[str]:
        """Sections sorted by path, values sorted by name; None when empty."""
        blocks = []
        for path in sorted(self.sections):
            mutations = sorted(self.sections[path], key=lambda m: m.name)
            if not mutations:
                continue
            lines = [f"[{path}]", *(m.render() for m in mutations)]
            blocks.append("".join(f"{line}\r\n" for line in lines))
        if not blocks:
            return None
        return REG_HEADER + "\r\n".join(blocks)


def _policy_toggle(overlay: RegOverlay, path: str, name: str, policy: WinecfgFeaturePolicy) -> None:
    if policy.use_wine_default:
        overlay.delete(path, name)
    else:
        overlay.set(path, name, "Y" if policy.is_enabled else "N")


def _virtual_desktop(overlay: RegOverlay, desktop: VirtualDesktopConfig) -> None:
    if desktop.state.use_wine_default or not desktop.state.is_enabled:
        overlay.delete(EXPLORER_KEY, "Desktop")
        overlay.delete(DESKTOPS_KEY, "Default")
        return
    resolution = (desktop.resolution or "").strip()
    if not resolution:
        return
    overlay.set(EXPLORER_KEY, "Desktop", "Default")
    overlay.set(DESKTOPS_KEY, "Default", resolution)


def normalize_dll_overrides(rules: Sequence[DllOverrideRule]) -> list[tuple[str, str]]:
    """Lowercase names without '.dll', sorted, first rule per name wins."""
    seen: dict[str, str] = {}
    for rule in rules:
        dll = rule.dll.strip()
        if dll.endswith(".dll"):
            dll = dll[:-4]
        dll = dll.strip().lower()
        mode = rule.mode.strip()
        if dll and mode and dll not in seen:
            seen[dll] = mode
    return sorted(seen.items())


def _desktop_folders(
    overlay: RegOverlay,
    integration: WinecfgFeaturePolicy,
    folders: Sequence[WineDesktopFolderMapping],
) -> None:
    mappings: dict[str, str] = {}
    for item in folders:
        name = DESKTOP_FOLDER_NAMES.get(item.folder_key.strip().lower())
        path = item.linux_path.strip()
        if name and path and name not in mappings:
            mappings[name] = path

    if integration.use_wine_default or not integration.is_enabled:
        for name in DESKTOP_FOLDER_NAMES.values():
            overlay.delete(USER_SHELL_FOLDERS_KEY, name)
            overlay.delete(SHELL_FOLDERS_KEY, name)
        return

    for name, path in sorted(mappings.items()):
        overlay.set(USER_SHELL_FOLDERS_KEY, name, path)
        overlay.set(SHELL_FOLDERS_KEY, name, path)


def normalize_drive_letter(raw: str) -> Optional[str]:
    letter = raw.strip()
    if len(letter) != 1 or not letter.isascii() or not letter.isalpha():
        return None
    return letter.upper()


def normalize_drive_type(raw: Optional[str]) -> Optional[str]:
    return DRIVE_TYPES.get((raw or "").strip().lower())


def _drive_metadata(overlay: RegOverlay, drives: Sequence[WineDriveMapping]) -> None:
    for drive in drives:
        if not drive.state.is_enabled:
            continue
        letter = normalize_drive_letter(drive.letter)
        if letter is None or letter == "C":
            continue
        drive_type = normalize_drive_type(drive.drive_type)
        if drive_type:
            overlay.set(DRIVES_KEY, f"{letter}:", drive_type)
        else:
            overlay.delete(DRIVES_KEY, f"{letter}:")


def build_winecfg_overlay(winecfg: WinecfgConfig) -> RegOverlay:
    """Registry mutations equivalent to the configured winecfg settings."""
    overlay = RegOverlay()

    version = (winecfg.windows_version or "").strip()
    if version:
        overlay.set(WINE_KEY, "Version", version)
    else:
        overlay.delete(WINE_KEY, "Version")

    _policy_toggle(overlay, X11_KEY, "GrabFullscreen", winecfg.auto_capture_mouse)
    _policy_toggle(overlay, X11_KEY, "Decorated", winecfg.window_decorations)
    _policy_toggle(overlay, X11_KEY, "Managed", winecfg.window_manager_control)
    _policy_toggle(overlay, MIME_KEY, "Enable", winecfg.mime_associations)

    _virtual_desktop(overlay, winecfg.virtual_desktop)

    if winecfg.screen_dpi is not None:
        overlay.set(DESKTOP_KEY, "LogPixels", int(winecfg.screen_dpi))
    else:
        overlay.delete(DESKTOP_KEY, "LogPixels")

    for dll, mode in normalize_dll_overrides(winecfg.dll_overrides):
        overlay.set(DLL_OVERRIDES_KEY, dll, mode)

    _desktop_folders(overlay, winecfg.desktop_integration, winecfg.desktop_folders)

    audio = AUDIO_DRIVERS.get((winecfg.audio_driver or "").strip().lower())
    if audio:
        overlay.set(DRIVERS_KEY, "Audio", audio)
    else:
        overlay.delete(DRIVERS_KEY, "Audio")

    _drive_metadata(overlay, winecfg.drives)
    return overlay


def render_winecfg_overlay(winecfg: WinecfgConfig) -> Optional[str]:
    return build_winecfg_overlay(winecfg).render()


def encode_reg_file(raw: str) -> bytes:
    """UTF-16LE with BOM, as regedit expects."""
    return b"\xff\xfe" + raw.encode("utf-16-le")


def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


# --- drive mappings ---

@dataclass
class ResolvedDrive:
    letter: str
    target_path: Path
    drive_type: Optional[str] = None
    label: Optional[str] = None
    serial: Optional[str] = None

    @property
    def link_name(self) -> str:
        return f"{self.letter.lower()}:"

    def fingerprint(self) -> str:
        return "|".join([
            self.letter, str(self.target_path), self.drive_type or "", self.label or "", self.serial or "",
        ])


def _drive_target(drive: WineDriveMapping, letter: str, game_root: Path) -> Optional[Path]:
    mandatory = drive.state is FeatureState.MANDATORY_ON
    host_path = (drive.host_path or "").strip()
    if host_path:
        path = Path(host_path)
        if path.is_absolute():
            return path
        if mandatory:
            raise RegistryError(f"mandatory winecfg drive host_path must be absolute: '{host_path}'")
        return None

    source = drive.source_relative_path.strip()
    if not source:
        if mandatory:
            raise RegistryError("mandatory winecfg drive mapping must provide host_path or source_relative_path")
        return None

    if all(part in ("", ".") for part in source.replace("\\", "/").split("/")):
        return Path("/") if letter == "Z" else game_root

    try:
        return resolve_relative_path(game_root, source)
    except PathError as e:
        raise RegistryError(f"invalid winecfg drive source_relative_path '{source}': {e}") from e


def resolve_active_drives(drives: Sequence[WineDriveMapping], game_root: Path) -> list[ResolvedDrive]:
    """
    Enabled, resolvable, existing drive mappings sorted by letter.

    C: is never remapped. Problems with optional mappings skip the entry;
    problems with mandatory ones raise RegistryError.
    """
    resolved: dict[str, ResolvedDrive] = {}
    for drive in drives:
        if not drive.state.is_enabled:
            continue
        mandatory = drive.state is FeatureState.MANDATORY_ON
        letter = normalize_drive_letter(drive.letter)
        if letter is None:
            if mandatory:
                raise RegistryError(f"invalid drive letter '{drive.letter}' in mandatory winecfg drive mapping")
            continue
        if letter == "C":
            continue

        target = _drive_target(drive, letter, game_root)
        if target is None:
            continue
        if not target.exists():
            if mandatory:
                raise RegistryError(f"mandatory winecfg drive '{letter}:' target path does not exist: {target}")
            continue

        if letter not in resolved:
            resolved[letter] = ResolvedDrive(
                letter=letter,
                target_path=target,
                drive_type=normalize_drive_type(drive.drive_type),
                label=(drive.label or "").strip() or None,
                serial=(drive.serial or "").strip() or None,
            )
    return [resolved[letter] for letter in sorted(resolved)]


def replace_symlink(link: Path, target: Path) -> None:
    """Point link at target, replacing whatever is there."""
    if link.is_symlink() and Path(os.readlink(link)) == target:
        return
    if link.is_symlink() or link.is_file():
        link.unlink()
    elif link.is_dir():
        shutil.rmtree(link)
    link.symlink_to(target)


def apply_drive_links(drives: Sequence[ResolvedDrive], effective_prefix: Path) -> None:
    if not drives:
        return
    dosdevices = effective_prefix / "dosdevices"
    try:
        dosdevices.mkdir(parents=True, exist_ok=True)
        for drive in drives:
            replace_symlink(dosdevices / drive.link_name, drive.target_path)
    except OSError as e:
        raise RegistryError(f"failed to apply winecfg drive mappings in '{effective_prefix}': {e}") from e


def winecfg_apply_hash(registry: Optional[str], drives: Sequence[ResolvedDrive]) -> str:
    serialized = (registry or "") + "\n--luthier-drive-mappings--\n"
    serialized += "".join(f"{drive.fingerprint()}\n" for drive in drives)
    return sha256_hex(serialized)


# --- cache markers ---

def cache_is_fresh(scope: Path, marker: str, expected: str) -> bool:
    try:
        saved = (scope / marker).read_text()
    except OSError:
        return False
    return saved.strip() == expected


def write_cache_marker(scope: Path, marker: str, digest: str) -> None:
    try:
        scope.mkdir(parents=True, exist_ok=True)
        (scope / marker).write_text(f"{digest}\n")
    except OSError as e:
        # A missing marker only costs a re-import next run.
        logger.warning("cannot write registry cache marker %s: %s", scope / marker, e)


# --- import ---

class RegistryApplier:
    """
    Imports registry content into a game's prefix through regedit.

    Usage:
        applier = RegistryApplier(config, report, prefix_root, host)
        result = applier.apply_registry_keys(dry_run=False)
        result = applier.apply_winecfg(game_root, dry_run=False)
    """

    def __init__(
        self,
        config: GameConfig,
        report: DoctorReport,
        prefix_root: Path,
        host: Optional[HostEnvironment] = None,
    ):
        self.config = config
        self.report = report
        self.prefix_root = Path(prefix_root)
        self.host = host or HostEnvironment.from_os()
        try:
            self.runtime = selected_runtime(report)
        except LaunchError as e:
            raise RegistryError(str(e)) from e
        self.effective_prefix = effective_prefix_path(self.prefix_root, self.runtime)

    def regedit_command(self, name: str, reg_windows_path: str) -> ExternalCommand:
        """regedit /S invocation for the selected runtime."""
        try:
            if self.runtime is RuntimeCandidate.PROTON_UMU:
                tokens = [runtime_program(self.report, self.runtime), "regedit.exe", "/S", reg_windows_path]
            elif self.runtime is RuntimeCandidate.PROTON_NATIVE:
                tokens = [runtime_program(self.report, self.runtime), "run", "regedit.exe", "/S", reg_windows_path]
            else:
                tokens = [wine_tool(self.report, "regedit"), "/S", reg_windows_path]
        except LaunchError as e:
            raise RegistryError(f"failed to build registry import command: {e}") from e

        return ExternalCommand(
            name=name,
            program=tokens[0],
            args=tokens[1:],
            timeout_secs=REGEDIT_TIMEOUT_SECS,
            cwd=str(self.prefix_root),
            mandatory=True,
        )

    def write_reg_file(self, stem: str, raw: str, dry_run: bool) -> str:
        """Write the .reg into the prefix's Windows temp dir; return its Windows path."""
        file_name = f"{stem}_{int(time.time() * 1000)}.reg"
        if not dry_run:
            temp_dir = self.effective_prefix / "drive_c" / "windows" / "temp"
            try:
                temp_dir.mkdir(parents=True, exist_ok=True)
                (temp_dir / file_name).write_bytes(encode_reg_file(raw))
            except OSError as e:
                raise RegistryError(f"failed to write temporary .reg import file: {e}") from e
        return f"C:\\windows\\temp\\{file_name}"

    def _import(self, name: str, stem: str, raw: str, digest: str, marker: str, dry_run: bool) -> CommandResult:
        reg_path = self.write_reg_file(stem, raw, dry_run)
        command = self.regedit_command(name, reg_path)
        env = compose_runtime_env(self.config, self.report, self.runtime, self.prefix_root, self.host)
        result = execute_command(command, env.as_list(), dry_run)
        if not dry_run and result.status is StepStatus.SUCCESS:
            write_cache_marker(self.effective_prefix, marker, digest)
        return result

    def _cached(self, name: str, note: str) -> CommandResult:
        logger.info("%s: %s", name, note)
        command = ExternalCommand(name=name, program="regedit", mandatory=True)
        return CommandResult.skipped(command, SkipReason.CACHED, note)

    def apply_registry_keys(self, dry_run: bool) -> Optional[CommandResult]:
        """Import config.registry_keys; None when there are none."""
        if not self.config.registry_keys:
            return None

        raw = render_registry_file(self.config.registry_keys)
        digest = sha256_hex(raw)
        if not dry_run and cache_is_fresh(self.effective_prefix, REGISTRY_MARKER, digest):
            return self._cached("registry-import", "registry keys unchanged; skipped (cached)")

        return self._import("registry-import", "luthier_registry_import", raw, digest, REGISTRY_MARKER, dry_run)

    def apply_winecfg(self, game_root: Path, dry_run: bool) -> Optional[CommandResult]:
        """Apply the winecfg overlay and drive links; None when there is nothing to apply."""
        raw = render_winecfg_overlay(self.config.winecfg)
        drives = resolve_active_drives(self.config.winecfg.drives, Path(game_root))
        if raw is None and not drives:
            return None

        digest = winecfg_apply_hash(raw, drives)
        if not dry_run and cache_is_fresh(self.effective_prefix, WINECFG_MARKER, digest):
            return self._cached("winecfg-registry-apply", "winecfg overrides unchanged; skipped (cached)")

        if not dry_run:
            apply_drive_links(drives, self.effective_prefix)

        if raw is not None:
            return self._import("winecfg-registry-apply", "luthier_winecfg_apply", raw, digest, WINECFG_MARKER, dry_run)

        links = [drive.link_name for drive in drives]
        command = ExternalCommand(name="winecfg-drive-apply", program="dosdevices", args=links, mandatory=True)
        if dry_run:
            return CommandResult.skipped(command, SkipReason.DRY_RUN, "dry-run mode")
        write_cache_marker(self.effective_prefix, WINECFG_MARKER, digest)
        return CommandResult(
            name=command.name,
            program=command.program,
            args=links,
            mandatory=True,
            status=StepStatus.SUCCESS,
        )
