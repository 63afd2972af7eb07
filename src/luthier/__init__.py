"""
Luthier - turn a Windows game into a self-contained Linux launcher.

Example usage:
    from luthier import GameConfig, run_doctor, play

    config = GameConfig.load("game.json")
    report = run_doctor(config)
    outcome = play(config, game_root="/games/MyGame")
    if outcome.aborted:
        print(outcome.abort_reason)

    # Embed the config into a launcher binary
    from luthier import inject_from_files
    inject_from_files("luthier-base", "game.json", "/games/MyGame/launch")
"""

from luthier.config import GameConfig, FeatureState, RuntimeCandidate
from luthier.doctor import run_doctor, DoctorReport
from luthier.injector import inject_from_files, extract_config_from_file
from luthier.pipeline import play, run_winecfg, PlayOutcome
from luthier.validation import validate

__version__ = "0.1.0"
__all__ = [
    "GameConfig",
    "FeatureState",
    "RuntimeCandidate",
    "run_doctor",
    "DoctorReport",
    "inject_from_files",
    "extract_config_from_file",
    "play",
    "run_winecfg",
    "PlayOutcome",
    "validate",
]
