"""
Config trailer codec and injector.

A launcher binary is a base executable with the GameConfig JSON appended,
followed by a fixed-size trailer:

    <base bytes><config json><b"GOCFGv1"><u64 LE json length><sha256(json)>
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import struct
import sys
from dataclasses import dataclass
from pathlib import Path

from luthier.config import ConfigError, GameConfig

logger = logging.getLogger(__name__)

TRAILER_MAGIC = b"GOCFGv1"
_LENGTH = struct.Struct("<Q")
_SHA256_BYTES = 32
TRAILER_BYTES = len(TRAILER_MAGIC) + _LENGTH.size + _SHA256_BYTES


class InjectError(Exception):
    """Error embedding or extracting a config trailer."""
    pass


class TrailerNotFound(InjectError):
    """The binary does not end with a config trailer."""
    pass


class TrailerTruncated(InjectError):
    """The binary is shorter than a trailer."""
    pass


class InvalidLength(InjectError):
    """The trailer's length field points before the start of the binary."""
    pass


class InvalidChecksum(InjectError):
    """The embedded config does not match the trailer checksum."""
    pass


class VerificationFailed(InjectError):
    """Re-extracting a freshly written binary did not return the injected config."""
    pass


@dataclass
class InjectOptions:
    backup_existing: bool = True
    make_executable: bool = True


@dataclass
class InjectionResult:
    output_path: Path
    config_len: int
    config_sha256: str


def append_config(base: bytes, config_json: bytes) -> bytes:
    return b"".join([
        base,
        config_json,
        TRAILER_MAGIC,
        _LENGTH.pack(len(config_json)),
        hashlib.sha256(config_json).digest(),
    ])


def extract_config_json(binary: bytes) -> bytes:
    """
    Recover the embedded config bytes from a launcher binary.

    Raises:
        TrailerTruncated: binary shorter than the trailer
        TrailerNotFound: magic missing
        InvalidLength: length field larger than the data before the trailer
        InvalidChecksum: sha256 mismatch
    """
    if len(binary) < TRAILER_BYTES:
        raise TrailerTruncated(f"binary is {len(binary)} bytes, smaller than a {TRAILER_BYTES}-byte trailer")

    trailer_start = len(binary) - TRAILER_BYTES
    magic_end = trailer_start + len(TRAILER_MAGIC)
    if binary[trailer_start:magic_end] != TRAILER_MAGIC:
        raise TrailerNotFound("config trailer magic not found")

    (config_len,) = _LENGTH.unpack_from(binary, magic_end)
    if config_len > trailer_start:
        raise InvalidLength(f"trailer declares {config_len} config bytes but only {trailer_start} precede it")

    config_json = binary[trailer_start - config_len:trailer_start]
    expected = binary[magic_end + _LENGTH.size:]
    if hashlib.sha256(config_json).digest() != expected:
        raise InvalidChecksum("embedded config checksum mismatch")
    return config_json


def extract_config_from_file(path: Path | str) -> bytes:
    path = Path(path)
    try:
        binary = path.read_bytes()
    except OSError as e:
        raise InjectError(f"cannot read {path}: {e}") from e
    return extract_config_json(binary)


def load_embedded_config(path: Path | str) -> GameConfig:
    """Parse the config embedded in a launcher binary."""
    return GameConfig.from_json_bytes(extract_config_from_file(path))


def backup_path_for(path: Path) -> Path:
    return path.with_name(f"{path.name}.bak")


def write_atomic(path: Path, data: bytes) -> None:
    """Write to a temp file in the same directory, then rename over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.parent / f".{path.name}.tmp-{os.getpid()}"
    try:
        tmp.write_bytes(data)
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | 0o111)


def inject_from_parts(
    base: bytes,
    config_json: bytes,
    output_path: Path | str,
    options: InjectOptions | None = None,
) -> InjectionResult:
    """
    Embed config_json into base and write the launcher to output_path.

    The config is validated against the GameConfig schema first. The output
    is re-read after writing and removed again if the round trip fails.

    Raises:
        InjectError: invalid config, I/O failure, or VerificationFailed
    """
    options = options or InjectOptions()
    output_path = Path(output_path)

    try:
        GameConfig.from_json_bytes(config_json)
    except ConfigError as e:
        raise InjectError(f"refusing to embed invalid config: {e}") from e

    injected = append_config(base, config_json)
    try:
        if options.backup_existing and output_path.exists():
            shutil.copy2(output_path, backup_path_for(output_path))
        write_atomic(output_path, injected)
        if options.make_executable and sys.platform != "win32":
            make_executable(output_path)
    except OSError as e:
        raise InjectError(f"cannot write {output_path}: {e}") from e

    try:
        extracted = extract_config_from_file(output_path)
    except InjectError as e:
        output_path.unlink(missing_ok=True)
        raise VerificationFailed(f"written binary {output_path} cannot be read back: {e}") from e
    if extracted != config_json:
        output_path.unlink(missing_ok=True)
        raise VerificationFailed(f"config extracted from {output_path} differs from the injected config")

    digest = hashlib.sha256(config_json).hexdigest()
    logger.info("injected %d config bytes into %s (sha256 %s)", len(config_json), output_path, digest)
    return InjectionResult(output_path=output_path, config_len=len(config_json), config_sha256=digest)


def inject_from_files(
    base_path: Path | str,
    config_path: Path | str,
    output_path: Path | str,
    options: InjectOptions | None = None,
) -> InjectionResult:
    """Convenience wrapper reading the base binary and config from disk."""
    try:
        base = Path(base_path).read_bytes()
        config_json = Path(config_path).read_bytes()
    except OSError as e:
        raise InjectError(f"cannot read injector input: {e}") from e
    return inject_from_parts(base, config_json, output_path, options)
