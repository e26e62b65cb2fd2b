"""
Configuration management for notepro profiles.

The configuration is stored as a TOML file in the profile directory,
beside the note store and the cache.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w


CONFIG_FILENAME = "notepro.toml"
CONFIG_VERSION = 1

DEFAULT_AUTOSAVE_DELAY = 1.0
DEFAULT_CACHE_QUOTA_BYTES = 5 * 1024 * 1024
DEFAULT_AI_MODEL = "gpt-4o"
DEFAULT_AI_TEMPERATURE = 0.7


@dataclass
class ProfileConfig:
    """Complete profile configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Persistence
    autosave_delay: float = DEFAULT_AUTOSAVE_DELAY
    cache_quota_bytes: int = DEFAULT_CACHE_QUOTA_BYTES
    write_retries: int = 0

    # AI
    ai_model: str = DEFAULT_AI_MODEL
    ai_temperature: float = DEFAULT_AI_TEMPERATURE

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def resolve_profile_path(path: Optional[Path] = None) -> Path:
    """
    Profile directory to use.

    Priority: explicit path, NOTEPRO_PROFILE_PATH, ~/.notepro
    """
    if path is not None:
        return Path(path).expanduser()
    env = os.environ.get("NOTEPRO_PROFILE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".notepro"


def load_config(profile_path: Path) -> ProfileConfig:
    """
    Load configuration from a profile directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = profile_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Validate version
    version = data.get("profile", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    storage = data.get("storage", {})
    ai = data.get("ai", {})
    try:
        return ProfileConfig(
            path=profile_path,
            version=version,
            created=data.get("profile", {}).get("created", ""),
            autosave_delay=float(storage.get("autosave_delay", DEFAULT_AUTOSAVE_DELAY)),
            cache_quota_bytes=int(storage.get("cache_quota_bytes", DEFAULT_CACHE_QUOTA_BYTES)),
            write_retries=int(storage.get("write_retries", 0)),
            ai_model=str(ai.get("model", DEFAULT_AI_MODEL)),
            ai_temperature=float(ai.get("temperature", DEFAULT_AI_TEMPERATURE)),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e


def save_config(config: ProfileConfig) -> None:
    """
    Save configuration to the profile directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "profile": {
            "version": config.version,
            "created": config.created,
        },
        "storage": {
            "autosave_delay": config.autosave_delay,
            "cache_quota_bytes": config.cache_quota_bytes,
            "write_retries": config.write_retries,
        },
        "ai": {
            "model": config.ai_model,
            "temperature": config.ai_temperature,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(profile_path: Path) -> ProfileConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = profile_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(profile_path)
    else:
        config = ProfileConfig(path=profile_path)
        save_config(config)
        return config
