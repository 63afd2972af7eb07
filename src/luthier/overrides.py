"""
Per-game runtime overrides.

Players can flip Optional features on or off without editing the embedded
config. Overrides are stored as JSON next to the other per-game data and
never touch Mandatory features.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from luthier.config import FeatureState, GameConfig
from luthier.host import HostEnvironment
from luthier.paths import compact_key

logger = logging.getLogger(__name__)


class OverrideError(Exception):
    """Error reading, writing or applying runtime overrides."""
    pass


class OptionalToggle(str, Enum):
    ON = "on"
    OFF = "off"
    DEFAULT = "default"

    @property
    def value_for_override(self) -> Optional[bool]:
        return {OptionalToggle.ON: True, OptionalToggle.OFF: False}.get(self)


class RuntimeOverrides(BaseModel):
    """Player choices for Optional features; None keeps the config default."""
    mangohud: Optional[bool] = Field(default=None)
    gamescope: Optional[bool] = Field(default=None)
    gamemode: Optional[bool] = Field(default=None)
    umu: Optional[bool] = Field(default=None)
    winetricks: Optional[bool] = Field(default=None)
    steam_runtime: Optional[bool] = Field(default=None)
    prime_offload: Optional[bool] = Field(default=None)
    wine_wayland: Optional[bool] = Field(default=None)
    hdr: Optional[bool] = Field(default=None)
    auto_dxvk_nvapi: Optional[bool] = Field(default=None)
    easy_anti_cheat_runtime: Optional[bool] = Field(default=None)
    battleye_runtime: Optional[bool] = Field(default=None)


# Feature name -> config fields it controls, as attribute paths.
FEATURE_FIELDS: dict[str, list[tuple[str, ...]]] = {
    "mangohud": [("requirements", "mangohud"), ("environment", "mangohud")],
    "gamescope": [("environment", "gamescope", "state"), ("requirements", "gamescope")],
    "gamemode": [("requirements", "gamemode"), ("environment", "gamemode")],
    "umu": [("requirements", "umu")],
    "winetricks": [("requirements", "winetricks")],
    "steam_runtime": [("requirements", "steam_runtime")],
    "prime_offload": [("environment", "prime_offload")],
    "wine_wayland": [("compatibility", "wine_wayland")],
    "hdr": [("compatibility", "hdr")],
    "auto_dxvk_nvapi": [("compatibility", "auto_dxvk_nvapi")],
    "easy_anti_cheat_runtime": [("compatibility", "easy_anti_cheat_runtime")],
    "battleye_runtime": [("compatibility", "battleye_runtime")],
}


def _get_state(config: GameConfig, path: tuple[str, ...]) -> FeatureState:
    node = config
    for attr in path:
        node = getattr(node, attr)
    return node


def _set_state(config: GameConfig, path: tuple[str, ...], state: FeatureState) -> None:
    node = config
    for attr in path[:-1]:
        node = getattr(node, attr)
    setattr(node, path[-1], state)


def feature_states(config: GameConfig, feature: str) -> list[FeatureState]:
    return [_get_state(config, path) for path in FEATURE_FIELDS[feature]]


def feature_overridable(config: GameConfig, feature: str) -> bool:
    return not any(state.is_mandatory for state in feature_states(config, feature))


def overrides_path(host: HostEnvironment, exe_hash: str) -> Path:
    return host.luthier_data_dir() / "overrides" / f"{compact_key(exe_hash)}.json"


def load_overrides(host: HostEnvironment, exe_hash: str) -> RuntimeOverrides:
    """Stored overrides for a game; defaults when none were saved."""
    path = overrides_path(host, exe_hash)
    if not path.exists():
        return RuntimeOverrides()
    try:
        return RuntimeOverrides.model_validate_json(path.read_text())
    except OSError as e:
        raise OverrideError(f"failed to read runtime overrides at {path}: {e}") from e
    except ValidationError as e:
        raise OverrideError(f"invalid runtime overrides at {path}: {e}") from e


def save_overrides(host: HostEnvironment, exe_hash: str, overrides: RuntimeOverrides) -> Path:
    path = overrides_path(host, exe_hash)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(overrides.model_dump_json(indent=2))
    except OSError as e:
        raise OverrideError(f"failed to write runtime overrides to {path}: {e}") from e
    return path


def apply_toggle(
    config: GameConfig,
    overrides: RuntimeOverrides,
    feature: str,
    requested: Optional[OptionalToggle],
) -> bool:
    """
    Record a toggle request in overrides.

    Returns:
        True if the stored value changed

    Raises:
        OverrideError: unknown feature, or the feature is Mandatory
    """
    if requested is None:
        return False
    if feature not in FEATURE_FIELDS:
        raise OverrideError(f"unknown feature '{feature}'")
    if not feature_overridable(config, feature):
        raise OverrideError(f"feature '{feature}' is not overridable with current policy")

    value = requested.value_for_override
    changed = getattr(overrides, feature) != value
    setattr(overrides, feature, value)
    return changed


def apply_runtime_overrides(config: GameConfig, overrides: RuntimeOverrides) -> GameConfig:
    """Copy of config with overrides applied to Optional states only."""
    out = config.model_copy(deep=True)
    for feature, paths in FEATURE_FIELDS.items():
        value = getattr(overrides, feature)
        if value is None:
            continue
        for path in paths:
            if _get_state(out, path).is_mandatory:
                continue
            _set_state(out, path, FeatureState.OPTIONAL_ON if value else FeatureState.OPTIONAL_OFF)
    return out


@dataclass
class FeatureView:
    """One row of the show-config table."""
    feature: str
    policy_state: FeatureState
    overridable: bool
    default_enabled: bool
    effective_enabled: bool
    override_value: Optional[bool]


def feature_views(config: GameConfig, overrides: RuntimeOverrides) -> list[FeatureView]:
    views = []
    for feature in FEATURE_FIELDS:
        state = feature_states(config, feature)[0]
        overridable = feature_overridable(config, feature)
        value = getattr(overrides, feature)
        effective = value if overridable and value is not None else state.is_enabled
        views.append(FeatureView(
            feature=feature,
            policy_state=state,
            overridable=overridable,
            default_enabled=state.is_enabled,
            effective_enabled=effective,
            override_value=value,
        ))
    return views
