"""
Game configuration models.

The GameConfig document describes one packaged game: where its executable
lives, which runtime it prefers, which optional tooling it wants and how the
Wine prefix must be shaped. It is stored as JSON, either next to the game or
embedded in the launcher binary as a trailer.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class ConfigError(Exception):
    """Error loading or parsing a game configuration."""
    pass


class FeatureState(str, Enum):
    """Four-valued policy for an optional capability."""
    MANDATORY_ON = "MandatoryOn"
    MANDATORY_OFF = "MandatoryOff"
    OPTIONAL_ON = "OptionalOn"
    OPTIONAL_OFF = "OptionalOff"

    @property
    def is_enabled(self) -> bool:
        return self in (FeatureState.MANDATORY_ON, FeatureState.OPTIONAL_ON)

    @property
    def is_mandatory(self) -> bool:
        return self in (FeatureState.MANDATORY_ON, FeatureState.MANDATORY_OFF)


class RuntimeCandidate(str, Enum):
    """The ways a Windows binary can be executed on the host."""
    PROTON_UMU = "ProtonUmu"
    PROTON_NATIVE = "ProtonNative"
    WINE = "Wine"

    @property
    def is_proton(self) -> bool:
        return self in (RuntimeCandidate.PROTON_UMU, RuntimeCandidate.PROTON_NATIVE)


class RuntimePreference(str, Enum):
    """Global preference axis used to reorder runtime candidates."""
    AUTO = "Auto"
    PROTON = "Proton"
    WINE = "Wine"


class WinecfgFeaturePolicy(BaseModel):
    """A winecfg toggle with an escape hatch back to Wine's own default."""
    state: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    use_wine_default: bool = Field(default=False, description="Delete the registry value instead of writing it")

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_state(cls, value: Any) -> Any:
        # Older documents stored only the FeatureState string.
        if isinstance(value, (str, FeatureState)):
            return {"state": value, "use_wine_default": False}
        return value

    @property
    def is_enabled(self) -> bool:
        return self.state.is_enabled


class RunnerConfig(BaseModel):
    """Runtime selection and sync primitives."""
    proton_version: str = Field(default="", description="Requested Proton build name or path")
    auto_update: bool = Field(default=False, description="Let UMU update its runtime")
    esync: bool = Field(default=True)
    fsync: bool = Field(default=True)
    runtime_preference: RuntimePreference = Field(default=RuntimePreference.AUTO)


class GamescopeConfig(BaseModel):
    """Gamescope compositor settings; numeric fields are kept as typed strings."""
    state: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    resolution: Optional[str] = Field(default=None, description="Legacy 'WxH' output resolution")
    fsr: bool = Field(default=False)
    game_width: str = Field(default="")
    game_height: str = Field(default="")
    output_width: str = Field(default="")
    output_height: str = Field(default="")
    upscale_method: str = Field(default="fsr", description="fsr, nis, integer or stretch")
    window_type: str = Field(default="fullscreen", description="fullscreen, borderless or windowed")
    enable_limiter: bool = Field(default=False)
    fps_limiter: str = Field(default="")
    fps_limiter_no_focus: str = Field(default="")
    force_grab_cursor: bool = Field(default=False)
    additional_options: str = Field(default="", description="Extra whitespace-separated gamescope flags")


class EnvConfig(BaseModel):
    """Launch tooling and user environment."""
    gamemode: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    gamescope: GamescopeConfig = Field(default_factory=GamescopeConfig)
    mangohud: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    prime_offload: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    custom_vars: dict[str, str] = Field(default_factory=dict)

    @field_validator("prime_offload", mode="before")
    @classmethod
    def _prime_offload_from_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return FeatureState.OPTIONAL_ON if value else FeatureState.OPTIONAL_OFF
        return value


class WrapperCommand(BaseModel):
    """A user wrapper placed around the game command."""
    state: FeatureState = Field(default=FeatureState.OPTIONAL_ON)
    executable: str = Field(description="Command name or absolute Linux path")
    args: str = Field(default="", description="Whitespace-separated arguments")


class CompatibilityConfig(BaseModel):
    """Compatibility layers and wrapper chain."""
    wine_wayland: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    hdr: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    auto_dxvk_nvapi: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    easy_anti_cheat_runtime: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    battleye_runtime: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    staging: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    wrapper_commands: list[WrapperCommand] = Field(default_factory=list)


class DllOverrideRule(BaseModel):
    dll: str
    mode: str = Field(description="Wine load order, e.g. 'native,builtin'")


class VirtualDesktopConfig(BaseModel):
    state: WinecfgFeaturePolicy = Field(default_factory=WinecfgFeaturePolicy)
    resolution: Optional[str] = Field(default=None, description="'WxH'")


class WineDesktopFolderMapping(BaseModel):
    folder_key: str = Field(description="desktop, documents, downloads, music, pictures or videos")
    shortcut_name: str
    linux_path: str


class WineDriveMapping(BaseModel):
    letter: str
    source_relative_path: str = Field(default="")
    state: FeatureState = Field(default=FeatureState.OPTIONAL_ON)
    host_path: Optional[str] = Field(default=None)
    drive_type: Optional[str] = Field(default=None, description="local_disk, network_share, floppy or cdrom")
    label: Optional[str] = Field(default=None)
    serial: Optional[str] = Field(default=None)


class WinecfgConfig(BaseModel):
    """Settings normally edited through winecfg, applied as a registry overlay."""
    windows_version: Optional[str] = Field(default=None)
    dll_overrides: list[DllOverrideRule] = Field(default_factory=list)
    auto_capture_mouse: WinecfgFeaturePolicy = Field(default_factory=WinecfgFeaturePolicy)
    window_decorations: WinecfgFeaturePolicy = Field(default_factory=WinecfgFeaturePolicy)
    window_manager_control: WinecfgFeaturePolicy = Field(default_factory=WinecfgFeaturePolicy)
    virtual_desktop: VirtualDesktopConfig = Field(default_factory=VirtualDesktopConfig)
    screen_dpi: Optional[int] = Field(default=None)
    desktop_integration: WinecfgFeaturePolicy = Field(default_factory=WinecfgFeaturePolicy)
    mime_associations: WinecfgFeaturePolicy = Field(default_factory=WinecfgFeaturePolicy)
    desktop_folders: list[WineDesktopFolderMapping] = Field(default_factory=list)
    drives: list[WineDriveMapping] = Field(default_factory=list)
    audio_driver: Optional[str] = Field(default=None, description="pipewire, pulseaudio or alsa")


class SystemDependency(BaseModel):
    """An extra host dependency declared by the packager."""
    name: str
    state: FeatureState = Field(default=FeatureState.OPTIONAL_ON)
    check_commands: list[str] = Field(default_factory=list)
    check_env_vars: list[str] = Field(default_factory=list)
    check_paths: list[str] = Field(default_factory=list)


class RuntimePolicy(BaseModel):
    """Primary runtime plus fallbacks."""
    strict: bool = Field(default=False, description="Never fall back away from primary")
    primary: RuntimeCandidate = Field(default=RuntimeCandidate.PROTON_UMU)
    fallback_order: list[RuntimeCandidate] = Field(default_factory=list)


class RequirementsConfig(BaseModel):
    runtime: RuntimePolicy = Field(default_factory=RuntimePolicy)
    umu: FeatureState = Field(default=FeatureState.OPTIONAL_ON)
    winetricks: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    gamescope: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    gamemode: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    mangohud: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)
    steam_runtime: FeatureState = Field(default=FeatureState.OPTIONAL_OFF)


class RegistryKey(BaseModel):
    """A single value to import into the prefix registry."""
    path: str = Field(description="Key path including hive, e.g. 'HKEY_CURRENT_USER\\Software\\Game'")
    name: str = Field(description="Value name, '@' for the default value")
    value_type: str = Field(description="REG_SZ, REG_DWORD, REG_QWORD, REG_BINARY, REG_MULTI_SZ or REG_EXPAND_SZ")
    value: str


class FolderMount(BaseModel):
    source_relative_path: str
    target_windows_path: str
    create_source_if_missing: bool = Field(default=False)


class ScriptsConfig(BaseModel):
    pre_launch: str = Field(default="")
    post_launch: str = Field(default="")


class GameConfig(BaseModel):
    """
    Complete game configuration.

    This is the document embedded in a launcher binary. Everything the
    doctor, prefix planner and launch composer do is derived from it.
    """
    config_version: int = Field(default=1)
    created_by: str = Field(default="luthier")
    game_name: str
    exe_hash: str = Field(description="SHA-256 of the game executable, 64 hex characters")
    relative_exe_path: str = Field(description="Executable path relative to the game root")
    launch_args: list[str] = Field(default_factory=list)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    environment: EnvConfig = Field(default_factory=EnvConfig)
    compatibility: CompatibilityConfig = Field(default_factory=CompatibilityConfig)
    winecfg: WinecfgConfig = Field(default_factory=WinecfgConfig)
    dependencies: list[str] = Field(default_factory=list, description="winetricks verbs")
    extra_system_dependencies: list[SystemDependency] = Field(default_factory=list)
    requirements: RequirementsConfig = Field(default_factory=RequirementsConfig)
    registry_keys: list[RegistryKey] = Field(default_factory=list)
    integrity_files: list[str] = Field(default_factory=list)
    folder_mounts: list[FolderMount] = Field(default_factory=list)
    scripts: ScriptsConfig = Field(default_factory=ScriptsConfig)

    def save(self, path: Path | str) -> None:
        """Save configuration as pretty-printed JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2))

    @classmethod
    def load(cls, path: Path | str) -> GameConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e
        return cls.from_json_bytes(raw)

    @classmethod
    def from_json_bytes(cls, raw: bytes) -> GameConfig:
        """Parse configuration bytes, raising ConfigError on malformed input."""
        try:
            data = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConfigError(f"Config is not valid JSON: {e}") from e
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Config does not match the GameConfig schema: {e}") from e
