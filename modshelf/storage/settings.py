"""
Loads and saves the JSON settings file.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from modshelf.exceptions import ConfigurationError
from modshelf.models.config import Settings

log = logging.getLogger(__name__)

SETTINGS_FILE_NAME = "settings.json"


class SettingsManager:
    """Handles all operations related to the application's settings file."""

    def __init__(self, settings_file_path: Path):
        self.settings_file_path = settings_file_path

    def load(self) -> Settings:
        """
        Reads and validates the settings file. A missing file yields defaults.

        Raises:
            ConfigurationError: If the file cannot be read, is not JSON, or fails
            validation.
        """
        if not self.settings_file_path.is_file():
            log.debug(f"No settings at '{self.settings_file_path}', using defaults.")
            return Settings()

        try:
            raw = self.settings_file_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Could not read settings file: {e}") from e

        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Settings file '{self.settings_file_path}' is not valid JSON: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError("Settings file must contain a JSON object.")

        try:
            return Settings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Settings validation failed:\n{e}") from e

    def save(self, settings: Settings) -> None:
        try:
            self.settings_file_path.parent.mkdir(parents=True, exist_ok=True)
            self.settings_file_path.write_text(
                json.dumps(settings.to_json_dict(), indent=2), encoding="utf-8"
            )
        except OSError as e:
            raise ConfigurationError(f"Failed to save settings file: {e}") from e
        log.debug(f"Settings saved to '{self.settings_file_path}'.")

    def update(self, **changes: Any) -> Settings:
        """Applies field changes (snake_case names), validates and persists them."""
        settings = self.load()
        try:
            for key, value in changes.items():
                setattr(settings, key, value)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid setting:\n{e}") from e
        self.save(settings)
        return settings
