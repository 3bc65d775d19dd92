"""Typed configuration loading and access.

A project is configured by `iwa.toml` at its root:

    [storage]
    root = ".iwa/storage"
    base_url = "https://assets.example.com"

    [release]
    state_dir = ".iwa/state"
    lock_timeout = 30.0
    retention = 0
    publish_retries = 3

    [policy]
    forbidden = ["staging.example.com"]
    scan_suffixes = [".js", ".css", ".html", ".json"]

Every key is optional; missing keys fall back to the defaults below.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_float,
    get_int,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "Config",
    "ConfigError",
    "PolicyConfig",
    "ReleaseConfig",
    "StorageConfig",
    "load_config",
    "load_config_or_default",
    "CONFIG_FILENAME",
    "DEFAULT_BASE_URL",
    "DEFAULT_LOCK_TIMEOUT",
    "DEFAULT_PUBLISH_RETRIES",
    "DEFAULT_SCAN_SUFFIXES",
]

CONFIG_FILENAME = "iwa.toml"

DEFAULT_STORAGE_ROOT = ".iwa/storage"
DEFAULT_STATE_DIR = ".iwa/state"
DEFAULT_BASE_URL = "http://127.0.0.1:8080"
DEFAULT_LOCK_TIMEOUT = 30.0
DEFAULT_PUBLISH_RETRIES = 3
DEFAULT_SCAN_SUFFIXES = (".js", ".mjs", ".css", ".html", ".json", ".txt")
DEFAULT_MAX_SCAN_BYTES = 8 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Where bundles and documents live, and how bundles are addressed."""

    root: str = DEFAULT_STORAGE_ROOT
    base_url: str = DEFAULT_BASE_URL


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    """Release registry and locking behaviour.

    retention: number of records kept per environment by `iwa prune`
    (0 keeps every record).
    """

    state_dir: str = DEFAULT_STATE_DIR
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    retention: int = 0
    publish_retries: int = DEFAULT_PUBLISH_RETRIES


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """Literal values that must never appear inside a permabundle."""

    forbidden: tuple[str, ...] = ()
    scan_suffixes: tuple[str, ...] = DEFAULT_SCAN_SUFFIXES
    max_scan_bytes: int = DEFAULT_MAX_SCAN_BYTES


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML)."""
        storage: StrDict = get_table(data, "storage") or {}
        release: StrDict = get_table(data, "release") or {}
        policy: StrDict = get_table(data, "policy") or {}

        lock_timeout = get_float(release, "lock_timeout")
        if lock_timeout is not None and lock_timeout <= 0:
            raise ValueError("release.lock_timeout must be positive")
        retention = get_int(release, "retention")
        if retention is not None and retention < 0:
            raise ValueError("release.retention must be >= 0")
        retries = get_int(release, "publish_retries")
        if retries is not None and retries < 1:
            raise ValueError("release.publish_retries must be >= 1")

        base_url = get_str(storage, "base_url") or DEFAULT_BASE_URL

        return cls(
            storage=StorageConfig(
                root=get_str(storage, "root") or DEFAULT_STORAGE_ROOT,
                base_url=base_url.rstrip("/"),
            ),
            release=ReleaseConfig(
                state_dir=get_str(release, "state_dir") or DEFAULT_STATE_DIR,
                lock_timeout=lock_timeout or DEFAULT_LOCK_TIMEOUT,
                retention=retention or 0,
                publish_retries=retries or DEFAULT_PUBLISH_RETRIES,
            ),
            policy=PolicyConfig(
                forbidden=tuple(s for s in (get_str_list(policy, "forbidden") or ()) if s),
                scan_suffixes=get_str_list(policy, "scan_suffixes") or DEFAULT_SCAN_SUFFIXES,
                max_scan_bytes=get_int(policy, "max_scan_bytes") or DEFAULT_MAX_SCAN_BYTES,
            ),
        )


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to iwa.toml

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Config:
    """Load config from file, or return the default config if it is unusable."""
    result = load_config(path)
    if isinstance(result, Ok):
        return result.value
    return Config()
