"""Runtime settings: field-by-field validation and JSON persistence."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import ProxySettings

logger = logging.getLogger(__name__)


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_unit_interval(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and 0 <= value <= 1
    )


def _is_model_name(value: Any) -> bool:
    # An empty name clears the override so aliases resolve through MODEL_MAPPING.
    return isinstance(value, str)


# wire name -> (attribute, validator)
SETTINGS_FIELDS: Dict[str, Any] = {
    "showReasoning": ("show_reasoning", _is_bool),
    "enableThinking": ("enable_thinking", _is_bool),
    "logRequests": ("log_requests", _is_bool),
    "streamingEnabled": ("streaming_enabled", _is_bool),
    "contextSize": ("context_size", _is_positive_int),
    "maxTokens": ("max_tokens", _is_positive_int),
    "temperature": ("temperature", _is_unit_interval),
    "currentModel": ("current_model", _is_model_name),
}


def apply_settings_update(settings: ProxySettings, update: Dict[str, Any]) -> List[str]:
    """
    Apply every recognized, valid field of update to settings in place.

    Invalid and unknown fields are skipped without failing the rest of the
    update. Returns the wire names of the fields that were applied.
    """
    applied = []
    for name, (attribute, is_valid) in SETTINGS_FIELDS.items():
        if name not in update:
            continue
        value = update[name]
        if not is_valid(value):
            logger.info(f"Ignoring invalid value for {name}: {value!r}")
            continue
        if isinstance(value, str):
            value = value.strip()
        elif attribute == "temperature":
            value = float(value)
        setattr(settings, attribute, value)
        applied.append(name)
    return applied


class SettingsStore:
    """
    Persists the runtime settings as one JSON object.

    The file holds the API key, every settings field and a setupComplete flag.
    It is read once at startup and rewritten wholesale on each save.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self, settings: ProxySettings) -> Optional[bool]:
        """
        Merge the persisted settings into settings.

        Returns the stored setupComplete flag, or None when nothing usable was
        found on disk.
        """
        if not self.path.exists():
            return None
        try:
            saved = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read settings from {self.path}: {str(e)}")
            return None
        if not isinstance(saved, dict):
            logger.error(f"Ignoring settings file {self.path}: not a JSON object")
            return None

        apply_settings_update(settings, saved)
        api_key = saved.get("apiKey")
        if isinstance(api_key, str) and api_key.strip():
            settings.api_key = api_key.strip()
        logger.info(f"Loaded settings from: {self.path}")
        return bool(saved.get("setupComplete", bool(settings.api_key)))

    def save(self, settings: ProxySettings, setup_complete: bool) -> bool:
        data = {
            "apiKey": settings.api_key,
            **settings.public_dict(),
            "setupComplete": setup_complete,
        }
        try:
            os.makedirs(self.path.parent, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2))
        except OSError as e:
            logger.error(f"Failed to save settings to {self.path}: {str(e)}")
            return False
        return True
