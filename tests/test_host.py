import dataclasses
import logging

import pytest

from luthier.host import HostEnvironment, HostError, is_truthy
from luthier.log import LOG_FILE_NAME, setup_logging

from conftest import write_executable


@pytest.mark.parametrize("value, expected", [
    ("1", True), ("true", True), (" Yes ", True), ("on", True),
    ("0", False), ("", False), (None, False), ("enabled", False),
])
def test_is_truthy(value, expected):
    assert is_truthy(value) is expected


@pytest.mark.parametrize("value, expected", [("1", True), ("TRUE", True), ("yes", False), (None, False)])
def test_dry_run_flag(value, expected):
    env = {} if value is None else {"LUTHIER_DRY_RUN": value}
    assert HostEnvironment.from_mapping(env).dry_run is expected


def test_which_skips_non_executables(tmp_path):
    first, second = tmp_path / "a", tmp_path / "b"
    first.mkdir()
    (first / "tool").write_text("not executable")
    tool = write_executable(second / "tool")
    host = HostEnvironment.from_mapping({"PATH": f"{first}:{second}"})
    assert host.which("tool") == tool
    assert host.which("missing") is None


def test_data_dir_requires_home():
    with pytest.raises(HostError):
        HostEnvironment.from_mapping({"HOME": "  "}).luthier_data_dir()


def test_wayland_session():
    assert HostEnvironment.from_mapping({"WAYLAND_DISPLAY": "wayland-0"}).wayland_session
    assert HostEnvironment.from_mapping({"XDG_SESSION_TYPE": "Wayland"}).wayland_session
    assert not HostEnvironment.from_mapping({"XDG_SESSION_TYPE": "x11"}).wayland_session


def test_setup_logging_writes_file(tmp_path):
    log_file = setup_logging(verbose=False, log_dir=tmp_path / "logs")
    assert log_file == tmp_path / "logs" / LOG_FILE_NAME

    logging.getLogger("luthier.test").info("hello from the launcher")
    for handler in logging.getLogger("luthier").handlers:
        handler.flush()
    assert "luthier.test - INFO - hello from the launcher" in log_file.read_text()


def test_setup_logging_replaces_handlers(tmp_path):
    setup_logging(log_dir=tmp_path)
    setup_logging(log_dir=tmp_path)
    assert len(logging.getLogger("luthier").handlers) == 2
    assert setup_logging() is None
    assert len(logging.getLogger("luthier").handlers) == 1


def test_host_fields_cannot_be_reassigned():
    host = HostEnvironment.from_mapping({"HOME": "/home/player"})
    with pytest.raises(dataclasses.FrozenInstanceError):
        host.vars = {}
