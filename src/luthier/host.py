"""
Host environment snapshot.

Probes and composers never read ``os.environ`` directly; they receive a
HostEnvironment so tests can pin HOME, PATH and flags to fixed values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

TRUTHY = ("1", "true", "yes", "on")

DRY_RUN_FLAG = "LUTHIER_DRY_RUN"
FORCE_GAMEMODE_UMU_FLAG = "LUTHIER_FORCE_GAMEMODE_UMU"


class HostError(Exception):
    """The host environment lacks something the launcher cannot work without."""
    pass


def is_truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() in TRUTHY


def is_executable_file(path: Path) -> bool:
    """True for a regular file with any execute bit set."""
    try:
        return path.is_file() and bool(path.stat().st_mode & 0o111)
    except OSError:
        return False


@dataclass(frozen=True)
class HostEnvironment:
    """Snapshot of the process environment used by the core. Fields cannot be reassigned."""
    vars: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_os(cls) -> HostEnvironment:
        return cls(vars=dict(os.environ))

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> HostEnvironment:
        return cls(vars=dict(values))

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.vars.get(key, default)

    def get_nonempty(self, key: str) -> Optional[str]:
        value = self.vars.get(key)
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def home(self) -> Optional[Path]:
        value = self.get_nonempty("HOME")
        return Path(value) if value else None

    @property
    def path_entries(self) -> list[Path]:
        raw = self.vars.get("PATH", "")
        return [Path(p) for p in raw.split(os.pathsep) if p]

    @property
    def dry_run(self) -> bool:
        value = self.get(DRY_RUN_FLAG)
        return value is not None and value.strip().lower() in ("1", "true")

    @property
    def force_gamemode_umu(self) -> bool:
        return is_truthy(self.get(FORCE_GAMEMODE_UMU_FLAG))

    @property
    def wayland_session(self) -> bool:
        if self.get("WAYLAND_DISPLAY") is not None:
            return True
        return (self.get("XDG_SESSION_TYPE") or "").lower() == "wayland"

    def which(self, name: str) -> Optional[Path]:
        """Find an executable by name in PATH."""
        for entry in self.path_entries:
            candidate = entry / name
            if is_executable_file(candidate):
                return candidate
        return None

    def luthier_data_dir(self) -> Path:
        """Root of Luthier's per-user state: ~/.local/share/Luthier."""
        home = self.home
        if home is None:
            raise HostError("HOME is not set")
        return home / ".local" / "share" / "Luthier"
