import json

import pytest

from luthier.config import ConfigError, FeatureState, GameConfig, RuntimeCandidate, WinecfgFeaturePolicy

from conftest import EXE_HASH, make_config


def test_defaults():
    config = make_config()
    assert config.config_version == 1
    assert config.requirements.runtime.primary is RuntimeCandidate.PROTON_UMU
    assert config.requirements.winetricks is FeatureState.OPTIONAL_OFF
    assert config.environment.gamescope.upscale_method == "fsr"
    assert config.environment.gamescope.window_type == "fullscreen"
    assert config.winecfg.mime_associations.state is FeatureState.OPTIONAL_OFF


def test_feature_state_predicates():
    assert FeatureState.MANDATORY_ON.is_enabled
    assert FeatureState.OPTIONAL_ON.is_enabled
    assert not FeatureState.MANDATORY_OFF.is_enabled
    assert FeatureState.MANDATORY_OFF.is_mandatory
    assert not FeatureState.OPTIONAL_OFF.is_mandatory


def test_prime_offload_accepts_bool():
    config = make_config(environment={"prime_offload": True})
    assert config.environment.prime_offload is FeatureState.OPTIONAL_ON
    config = make_config(environment={"prime_offload": False})
    assert config.environment.prime_offload is FeatureState.OPTIONAL_OFF


def test_winecfg_policy_accepts_bare_state():
    config = make_config(winecfg={"auto_capture_mouse": "MandatoryOn"})
    policy = config.winecfg.auto_capture_mouse
    assert policy == WinecfgFeaturePolicy(state=FeatureState.MANDATORY_ON, use_wine_default=False)


def test_save_and_load(tmp_path):
    config = make_config(launch_args=["-windowed"], dependencies=["vcrun2019"])
    path = tmp_path / "out" / "game.json"
    config.save(path)

    loaded = GameConfig.load(path)
    assert loaded == config
    assert json.loads(path.read_text())["exe_hash"] == EXE_HASH


def test_from_json_bytes_rejects_garbage():
    with pytest.raises(ConfigError, match="not valid JSON"):
        GameConfig.from_json_bytes(b"{nope")


def test_from_json_bytes_rejects_schema_mismatch():
    with pytest.raises(ConfigError, match="schema"):
        GameConfig.from_json_bytes(b'{"game_name": "x"}')


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Cannot read config"):
        GameConfig.load(tmp_path / "missing.json")
