import pytest

from luthier.config import FeatureState
from luthier.overrides import (
    FEATURE_FIELDS,
    OptionalToggle,
    OverrideError,
    RuntimeOverrides,
    apply_runtime_overrides,
    apply_toggle,
    feature_overridable,
    feature_views,
    load_overrides,
    overrides_path,
    save_overrides,
)

from conftest import EXE_HASH, make_config


def test_every_feature_has_an_override_field():
    assert set(FEATURE_FIELDS) == set(RuntimeOverrides.model_fields)


def test_toggle_optional_feature():
    config = make_config(requirements={"mangohud": "OptionalOff"})
    overrides = RuntimeOverrides()
    assert apply_toggle(config, overrides, "mangohud", OptionalToggle.ON)
    assert overrides.mangohud is True
    assert not apply_toggle(config, overrides, "mangohud", OptionalToggle.ON)
    assert apply_toggle(config, overrides, "mangohud", OptionalToggle.DEFAULT)
    assert overrides.mangohud is None
    assert not apply_toggle(config, overrides, "mangohud", None)


@pytest.mark.parametrize("state", ["MandatoryOn", "MandatoryOff"])
def test_mandatory_features_cannot_be_toggled(state):
    config = make_config(requirements={"gamemode": state})
    assert not feature_overridable(config, "gamemode")
    with pytest.raises(OverrideError, match="not overridable"):
        apply_toggle(config, RuntimeOverrides(), "gamemode", OptionalToggle.OFF)


def test_mandatory_in_any_field_blocks_toggle():
    config = make_config(environment={"mangohud": "MandatoryOn"})
    assert not feature_overridable(config, "mangohud")


def test_unknown_feature():
    with pytest.raises(OverrideError, match="unknown feature"):
        apply_toggle(make_config(), RuntimeOverrides(), "rgb", OptionalToggle.ON)


def test_apply_runtime_overrides_only_touches_optional_states():
    config = make_config(
        requirements={"winetricks": "OptionalOff", "gamemode": "MandatoryOff"},
        environment={"gamescope": {"state": "OptionalOn"}},
        compatibility={"hdr": "MandatoryOn"},
    )
    overrides = RuntimeOverrides(winetricks=True, gamemode=True, gamescope=False, hdr=False)
    effective = apply_runtime_overrides(config, overrides)

    assert effective.requirements.winetricks is FeatureState.OPTIONAL_ON
    assert effective.requirements.gamemode is FeatureState.MANDATORY_OFF
    assert effective.environment.gamescope.state is FeatureState.OPTIONAL_OFF
    assert effective.requirements.gamescope is FeatureState.OPTIONAL_OFF
    assert effective.compatibility.hdr is FeatureState.MANDATORY_ON
    assert config.requirements.winetricks is FeatureState.OPTIONAL_OFF


def test_save_and_load(host, home):
    assert load_overrides(host, EXE_HASH) == RuntimeOverrides()

    path = save_overrides(host, EXE_HASH, RuntimeOverrides(hdr=True))
    assert path == overrides_path(host, EXE_HASH)
    assert path == home / ".local/share/Luthier/overrides/ab12cd34ef56.json"
    assert load_overrides(host, EXE_HASH) == RuntimeOverrides(hdr=True)


def test_load_rejects_garbage(host):
    path = overrides_path(host, EXE_HASH)
    path.parent.mkdir(parents=True)
    path.write_text('{"hdr": "maybe"}')
    with pytest.raises(OverrideError, match="invalid runtime overrides"):
        load_overrides(host, EXE_HASH)


def test_feature_views():
    config = make_config(requirements={"mangohud": "OptionalOff", "umu": "MandatoryOn"})
    views = {v.feature: v for v in feature_views(config, RuntimeOverrides(mangohud=True, umu=False))}

    assert views["mangohud"].overridable
    assert not views["mangohud"].default_enabled
    assert views["mangohud"].effective_enabled
    assert not views["umu"].overridable
    assert views["umu"].effective_enabled
