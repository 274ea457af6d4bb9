# deck/config.py
"""
Configuration management for Deck.

User settings live in a TOML file under ``~/.config/deck``. A project may
override them with ``.deck/config.yaml``, and ``DECK_*`` environment
variables (optionally from a ``.env`` file) win over both.
"""
import os
import tomllib
from pathlib import Path
from typing import Dict, Any, List, Optional

import tomli_w
import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError

from deck.constants import (
    CONFIG_FILE,
    DECK_DIR_NAME,
    DEFAULT_KEEP_LATEST,
    DEFAULT_PORT_RANGE,
    DEFAULT_PRODUCTION_PATTERNS,
    DEFAULT_STOPPED_OLDER_THAN_DAYS,
    DEFAULT_TEMPLATE_BRANCH,
    DEFAULT_TEMPLATE_REPOSITORY,
    PORT_SEARCH_WINDOW,
    PROJECT_CONFIG_NAME,
)
from deck.utils.logging import get_logger

logger = get_logger(__name__)


# --- Configuration Models ---

class TemplatesConfig(BaseModel):
    """Remote template repository settings."""
    repository: str = Field(DEFAULT_TEMPLATE_REPOSITORY, description="Git repository holding the templates/ directory")
    branch: str = Field(DEFAULT_TEMPLATE_BRANCH, description="Branch to check out")
    auto_update: bool = Field(True, description="Sync templates before every start")
    sync_timeout: float = Field(30.0, description="Seconds allowed for the reachability probe")


class EngineConfig(BaseModel):
    """Container engine settings."""
    preferred: Optional[str] = Field(None, description="Force 'docker' or 'podman'")
    command_timeout: float = Field(120.0, description="Timeout for ordinary engine commands")
    build_timeout: float = Field(1800.0, description="Timeout for image builds")
    probe_timeout: float = Field(10.0, description="Timeout for the connectivity probe")
    probe_retry_delay: float = Field(1.0, description="Delay before the single probe retry")


class PortsConfig(BaseModel):
    """Port allocation settings."""
    range_start: int = Field(DEFAULT_PORT_RANGE[0], description="First port of the fallback scan range")
    range_end: int = Field(DEFAULT_PORT_RANGE[1], description="Last port of the fallback scan range")
    search_window: int = Field(PORT_SEARCH_WINDOW, description="Ports searched above a conflicting port")
    probe_timeout: float = Field(1.0, description="Timeout for a single port probe")
    allow_privileged: bool = Field(False, description="Allow ports 1-1024")


class ProtectionConfig(BaseModel):
    """Production protection settings."""
    production_patterns: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PRODUCTION_PATTERNS),
        description="Regular expressions marking container names as production",
    )


class CleaningConfig(BaseModel):
    """Cleanup defaults."""
    keep_latest: int = Field(DEFAULT_KEEP_LATEST, description="Images kept per name prefix")
    stopped_older_than_days: int = Field(DEFAULT_STOPPED_OLDER_THAN_DAYS, description="Age of removable stopped containers")


class AppConfig(BaseModel):
    """Application configuration settings."""
    templates: TemplatesConfig = Field(default_factory=TemplatesConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    ports: PortsConfig = Field(default_factory=PortsConfig)
    protection: ProtectionConfig = Field(default_factory=ProtectionConfig)
    cleaning: CleaningConfig = Field(default_factory=CleaningConfig)
    debug: bool = Field(False, description="Enable debug mode")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# --- Configuration Manager ---

class ConfigManager:
    """Manages the configuration for Deck."""

    def __init__(self, config_file: Path = CONFIG_FILE):
        self._config: AppConfig = AppConfig()
        self._config_file = config_file
        self._logger = logger

    def _environment_overrides(self) -> Dict[str, Any]:
        """Collect DECK_* overrides from the environment and a .env file."""
        load_dotenv(find_dotenv(usecwd=True))
        overrides: Dict[str, Any] = {}

        engine = os.getenv("DECK_ENGINE")
        if engine:
            overrides.setdefault("engine", {})["preferred"] = engine.lower()

        repository = os.getenv("DECK_TEMPLATE_REPOSITORY")
        if repository:
            overrides.setdefault("templates", {})["repository"] = repository

        patterns = os.getenv("DECK_PRODUCTION_PATTERNS")
        if patterns:
            overrides.setdefault("protection", {})["production_patterns"] = [
                p.strip() for p in patterns.split(",") if p.strip()
            ]

        debug = os.getenv("DECK_DEBUG")
        if debug:
            overrides["debug"] = debug.lower() in ("1", "true", "yes")

        return overrides

    def _read_toml(self) -> Dict[str, Any]:
        if not self._config_file.exists():
            self._logger.debug(f"Configuration file not found at '{self._config_file}'. Saving default configuration.")
            self.save_config()
            return {}
        try:
            with open(self._config_file, "rb") as f:
                return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            self._logger.error(f"Error decoding TOML configuration file ({self._config_file}): {e}")
        except OSError as e:
            self._logger.error(f"Could not read configuration file {self._config_file}: {e}")
        return {}

    def _read_project_yaml(self, project_root: Optional[Path]) -> Dict[str, Any]:
        if project_root is None:
            return {}
        project_file = project_root / DECK_DIR_NAME / PROJECT_CONFIG_NAME
        if not project_file.exists():
            return {}
        try:
            data = yaml.safe_load(project_file.read_text(encoding="utf-8")) or {}
        except (yaml.YAMLError, OSError) as e:
            self._logger.error(f"Error reading project configuration {project_file}: {e}")
            return {}
        if not isinstance(data, dict):
            self._logger.warning(f"Ignoring project configuration {project_file}: expected a mapping")
            return {}
        return data

    def load_config(self, project_root: Optional[Path] = None) -> AppConfig:
        """
        Load configuration from the user TOML file, the project YAML file
        and the environment, in increasing order of precedence.

        Args:
            project_root: Project directory holding an optional .deck/config.yaml

        Returns:
            The loaded configuration
        """
        data = self._read_toml()
        data = _merge(data, self._read_project_yaml(project_root))
        data = _merge(data, self._environment_overrides())

        try:
            self._config = AppConfig(**data)
        except ValidationError as e:
            self._logger.error(f"Invalid configuration, using defaults: {e}")
            self._config = AppConfig()

        return self._config

    def save_config(self) -> None:
        """Saves the current configuration to the config file (as TOML)."""
        try:
            self._config_file.parent.mkdir(parents=True, exist_ok=True)
            config_dict = self._config.model_dump(exclude_none=True)
            with open(self._config_file, "wb") as f:
                tomli_w.dump(config_dict, f)
            self._logger.debug(f"Configuration saved to {self._config_file}")
        except OSError as e:
            self._logger.error(f"Error saving TOML configuration to {self._config_file}: {e}")

    @property
    def config(self) -> AppConfig:
        """Provides access to the current application configuration."""
        return self._config


# --- Global Instance ---

config_manager = ConfigManager()
