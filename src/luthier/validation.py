"""
Semantic validation of a GameConfig.

Schema errors are caught by pydantic when the document is parsed. This
module checks what the schema cannot express and reports every violation
at once, each tagged with a code and a field path.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from luthier.config import GameConfig
from luthier.paths import (
    PathError,
    has_windows_drive_prefix,
    normalize_relative_payload_path,
    normalize_windows_mount_target,
)
from luthier.runtime import effective_candidates

MAX_PIXELS = 16384
MAX_FPS = 1000
MAX_DPI = 960

REGISTRY_HIVES = (
    "HKCU\\",
    "HKLM\\",
    "HKCR\\",
    "HKU\\",
    "HKCC\\",
    "HKEY_CURRENT_USER\\",
    "HKEY_LOCAL_MACHINE\\",
    "HKEY_CLASSES_ROOT\\",
    "HKEY_USERS\\",
    "HKEY_CURRENT_CONFIG\\",
)

REGISTRY_VALUE_TYPES = (
    "REG_SZ",
    "REG_EXPAND_SZ",
    "REG_DWORD",
    "REG_QWORD",
    "REG_BINARY",
    "REG_MULTI_SZ",
)

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_HEX64 = re.compile(r"^[0-9A-Fa-f]{64}$")
_WINDOWS_FORBIDDEN = set('<>:"/\\|?*')


@dataclass
class Issue:
    """One validation problem."""
    code: str
    field: str
    message: str


def _has_control_chars(raw: str) -> bool:
    return any(ord(ch) < 32 or ord(ch) == 127 for ch in raw)


def _bounded_int_problem(raw: str, low: int, high: int) -> Optional[str]:
    trimmed = raw.strip()
    if not trimmed.isdigit():
        return "must contain only positive digits"
    value = int(trimmed)
    if value < low or value > high:
        return f"must be between {low} and {high}"
    return None


def _resolution_problem(raw: str) -> Optional[str]:
    left, sep, right = raw.strip().partition("x")
    if not sep:
        return "resolution must use the format WIDTHxHEIGHT"
    problem = _bounded_int_problem(left, 1, MAX_PIXELS)
    if problem:
        return f"invalid width: {problem}"
    problem = _bounded_int_problem(right, 1, MAX_PIXELS)
    if problem:
        return f"invalid height: {problem}"
    return None


def _env_name_problem(raw: str) -> Optional[str]:
    if not raw.strip():
        return "environment variable name is empty"
    if not _ENV_NAME.match(raw.strip()):
        return "must match [A-Za-z_][A-Za-z0-9_]*"
    return None


def _wrapper_problem(raw: str) -> Optional[str]:
    trimmed = raw.strip()
    if " " in trimmed or "\t" in trimmed:
        return "wrapper executable must not contain spaces; move arguments to the args field"
    if trimmed[0] in "\"'":
        return "wrapper executable must not be quoted"
    if _has_control_chars(trimmed):
        return "wrapper executable contains invalid control characters"
    if trimmed.startswith("/"):
        return None
    if "\\" in trimmed or has_windows_drive_prefix(trimmed):
        return "wrapper executable looks like a Windows path; use a Linux command/path"
    return None


def _command_problem(raw: str) -> Optional[str]:
    trimmed = raw.strip()
    if not trimmed:
        return "command token is empty"
    if _has_control_chars(trimmed):
        return "command token contains invalid control characters"
    if " " in trimmed or "\t" in trimmed:
        return "command token must not contain spaces"
    if "\\" in trimmed or has_windows_drive_prefix(trimmed):
        return "command token looks like a Windows path; use a Linux command/path"
    return None


def _linux_path_problem(raw: str) -> Optional[str]:
    trimmed = raw.strip()
    if not trimmed:
        return "Linux path is empty"
    if _has_control_chars(trimmed):
        return "Linux path contains invalid control characters"
    if has_windows_drive_prefix(trimmed) or trimmed.startswith("\\\\"):
        return "expected a Linux path, but received a Windows-style path"
    if not trimmed.startswith("/"):
        return "Linux path must be absolute and start with '/'"
    return None


def _registry_path_problem(raw: str) -> Optional[str]:
    if _has_control_chars(raw):
        return "registry path contains invalid control characters"
    upper = raw.strip().replace("/", "\\").upper()
    if not upper.startswith(REGISTRY_HIVES):
        return "registry path must start with a supported Windows registry hive"
    return None


def _dll_problem(raw: str) -> Optional[str]:
    trimmed = raw.strip()
    if not trimmed:
        return "DLL name is empty"
    if any(ch in trimmed for ch in "/\\:"):
        return "DLL override expects a DLL name, not a path"
    if _has_control_chars(trimmed) or any(ch in trimmed for ch in '<>"|?*'):
        return "DLL name contains invalid characters"
    return None


def _friendly_name_problem(raw: str) -> Optional[str]:
    trimmed = raw.strip()
    if not trimmed:
        return "value is empty"
    if _has_control_chars(trimmed) or any(ch in _WINDOWS_FORBIDDEN for ch in trimmed):
        return "contains characters not allowed in Windows names"
    if trimmed.endswith("."):
        return "must not end with a dot on Windows"
    return None


def _serial_problem(raw: str) -> Optional[str]:
    trimmed = raw.strip()
    if not trimmed:
        return None
    if len(trimmed) > 32:
        return "drive serial is too long"
    if not all(ch in "0123456789abcdefABCDEF-" for ch in trimmed):
        return "drive serial must contain only hexadecimal characters and '-'"
    return None


class ConfigValidator:
    """
    Collects every rule violation of a GameConfig.

    Usage:
        issues = ConfigValidator(config).validate()
        for issue in issues:
            print(issue.code, issue.field, issue.message)
    """

    def __init__(self, config: GameConfig):
        self.config = config
        self.issues: list[Issue] = []

    def add(self, code: str, field: str, message: str) -> None:
        self.issues.append(Issue(code=code, field=field, message=message))

    def validate(self) -> list[Issue]:
        self.issues = []
        self._check_identity()
        self._check_paths()
        self._check_folder_mounts()
        self._check_environment()
        self._check_wrappers()
        self._check_registry()
        self._check_system_dependencies()
        self._check_winecfg()
        self._check_gamescope()
        return self.issues

    def _relative_path(self, field: str, raw: str) -> None:
        try:
            normalize_relative_payload_path(raw)
        except PathError as e:
            self.add(e.code, field, str(e))

    def _required_number(self, field: str, raw: str, low: int, high: int) -> None:
        if not raw.strip():
            self.add("NumberRequired", field, f"{field} is required")
            return
        problem = _bounded_int_problem(raw, low, high)
        if problem:
            self.add("NumberOutOfRange", field, problem)

    def _check_identity(self) -> None:
        config = self.config
        if not config.game_name.strip():
            self.add("GameNameRequired", "game_name", "game name is required")
        if not _HEX64.match(config.exe_hash.strip()):
            self.add("ExeHashInvalid", "exe_hash", "exe_hash must be a 64-character hexadecimal SHA-256")

        uses_proton = any(c.is_proton for c in effective_candidates(config.requirements.runtime))
        if uses_proton and not config.runner.proton_version.strip():
            self.add(
                "ProtonVersionRequired",
                "runner.proton_version",
                "runner.proton_version is required when a Proton runtime is allowed",
            )

    def _check_paths(self) -> None:
        self._relative_path("relative_exe_path", self.config.relative_exe_path)
        for index, path in enumerate(self.config.integrity_files):
            self._relative_path(f"integrity_files[{index}]", path)

    def _check_folder_mounts(self) -> None:
        seen: set[str] = set()
        for index, mount in enumerate(self.config.folder_mounts):
            field = f"folder_mounts[{index}]"
            self._relative_path(f"{field}.source_relative_path", mount.source_relative_path)
            try:
                target = normalize_windows_mount_target(mount.target_windows_path)
            except PathError as e:
                self.add(e.code, f"{field}.target_windows_path", str(e))
                continue

            key = target.lower()
            if key in seen:
                self.add(
                    "DuplicateFolderMountTarget",
                    f"{field}.target_windows_path",
                    f"duplicate folder mount target: {mount.target_windows_path}",
                )
            seen.add(key)

    def _check_environment(self) -> None:
        for key in self.config.environment.custom_vars:
            problem = _env_name_problem(key)
            if problem:
                self.add("EnvVarNameInvalid", f"environment.custom_vars.{key}", problem)

    def _check_wrappers(self) -> None:
        for index, wrapper in enumerate(self.config.compatibility.wrapper_commands):
            field = f"compatibility.wrapper_commands[{index}]"
            if not wrapper.executable.strip():
                self.add("WrapperExecutableRequired", field, "wrapper executable/command is required")
                continue
            problem = _wrapper_problem(wrapper.executable)
            if problem:
                self.add("WrapperExecutableInvalid", field, problem)

    def _check_registry(self) -> None:
        seen: set[tuple[str, str]] = set()
        for index, entry in enumerate(self.config.registry_keys):
            field = f"registry_keys[{index}]"
            if not entry.path.strip():
                self.add("RegistryPathRequired", f"{field}.path", "registry path is required")
            else:
                problem = _registry_path_problem(entry.path)
                if problem:
                    self.add("RegistryPathInvalid", f"{field}.path", problem)

            if not entry.name.strip():
                self.add("RegistryNameRequired", f"{field}.name", "registry value name is required")

            if entry.value_type.strip().upper() not in REGISTRY_VALUE_TYPES:
                self.add(
                    "RegistryValueTypeInvalid",
                    f"{field}.value_type",
                    f"unsupported registry value type: {entry.value_type!r}",
                )

            if entry.path.strip() and entry.name.strip():
                pair = (entry.path.strip().replace("/", "\\").lower(), entry.name.strip().lower())
                if pair in seen:
                    self.add("RegistryDuplicatePair", field, "duplicate registry path/name entry")
                seen.add(pair)

    def _check_system_dependencies(self) -> None:
        for index, dep in enumerate(self.config.extra_system_dependencies):
            field = f"extra_system_dependencies[{index}]"
            if not dep.name.strip():
                self.add("SystemDependencyNameRequired", f"{field}.name", "system dependency name is required")
            for i, command in enumerate(dep.check_commands):
                problem = _command_problem(command)
                if problem:
                    self.add("SystemDependencyCommandInvalid", f"{field}.check_commands[{i}]", problem)
            for i, env_var in enumerate(dep.check_env_vars):
                problem = _env_name_problem(env_var)
                if problem:
                    self.add("SystemDependencyEnvVarInvalid", f"{field}.check_env_vars[{i}]", problem)
            for i, path in enumerate(dep.check_paths):
                problem = _linux_path_problem(path)
                if problem:
                    self.add("SystemDependencyPathInvalid", f"{field}.check_paths[{i}]", problem)

    def _check_winecfg(self) -> None:
        winecfg = self.config.winecfg

        for index, rule in enumerate(winecfg.dll_overrides):
            problem = _dll_problem(rule.dll)
            if problem:
                self.add("DllOverrideInvalid", f"winecfg.dll_overrides[{index}].dll", problem)

        for index, folder in enumerate(winecfg.desktop_folders):
            field = f"winecfg.desktop_folders[{index}]"
            problem = _friendly_name_problem(folder.shortcut_name)
            if problem:
                self.add("DesktopFolderShortcutInvalid", f"{field}.shortcut_name", problem)
            problem = _linux_path_problem(folder.linux_path)
            if problem:
                self.add("DesktopFolderLinuxPathInvalid", f"{field}.linux_path", problem)

        for index, drive in enumerate(winecfg.drives):
            field = f"winecfg.drives[{index}]"
            letter = drive.letter.strip().rstrip(":")
            if len(letter) != 1 or not letter.isalpha():
                self.add("DriveLetterInvalid", f"{field}.letter", "drive letter must be a single letter A-Z")
            if drive.host_path is not None:
                problem = _linux_path_problem(drive.host_path)
                if problem:
                    self.add("DriveHostPathInvalid", f"{field}.host_path", problem)
            elif drive.source_relative_path.strip() not in ("", "."):
                self._relative_path(f"{field}.source_relative_path", drive.source_relative_path)
            if drive.label is not None:
                problem = _friendly_name_problem(drive.label)
                if problem:
                    self.add("DriveLabelInvalid", f"{field}.label", problem)
            if drive.serial is not None:
                problem = _serial_problem(drive.serial)
                if problem:
                    self.add("DriveSerialInvalid", f"{field}.serial", problem)

        desktop = winecfg.virtual_desktop
        if desktop.state.is_enabled and not desktop.state.use_wine_default:
            field = "winecfg.virtual_desktop.resolution"
            if not (desktop.resolution or "").strip():
                self.add(
                    "VirtualDesktopResolutionRequired",
                    field,
                    "virtual desktop resolution is required when the override is enabled",
                )
            else:
                problem = _resolution_problem(desktop.resolution)
                if problem:
                    self.add("VirtualDesktopResolutionInvalid", field, problem)

        if winecfg.screen_dpi is not None and not 1 <= winecfg.screen_dpi <= MAX_DPI:
            self.add("ScreenDpiOutOfRange", "winecfg.screen_dpi", f"must be between 1 and {MAX_DPI}")

    def _check_gamescope(self) -> None:
        gamescope = self.config.environment.gamescope
        if not gamescope.state.is_enabled:
            return

        prefix = "environment.gamescope"
        self._required_number(f"{prefix}.game_width", gamescope.game_width, 1, MAX_PIXELS)
        self._required_number(f"{prefix}.game_height", gamescope.game_height, 1, MAX_PIXELS)

        auto_output = not gamescope.output_width.strip() and not gamescope.output_height.strip()
        if not auto_output:
            self._required_number(f"{prefix}.output_width", gamescope.output_width, 1, MAX_PIXELS)
            self._required_number(f"{prefix}.output_height", gamescope.output_height, 1, MAX_PIXELS)

        if gamescope.resolution and gamescope.resolution.strip():
            problem = _resolution_problem(gamescope.resolution)
            if problem:
                self.add("GamescopeResolutionInvalid", f"{prefix}.resolution", problem)

        if gamescope.enable_limiter:
            self._required_number(f"{prefix}.fps_limiter", gamescope.fps_limiter, 1, MAX_FPS)
            self._required_number(f"{prefix}.fps_limiter_no_focus", gamescope.fps_limiter_no_focus, 1, MAX_FPS)


def validate(config: GameConfig) -> list[Issue]:
    """Convenience function returning all issues for a config."""
    return ConfigValidator(config).validate()
