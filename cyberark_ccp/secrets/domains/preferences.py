"""Persistent user preferences for cyberark-ccp.

Stored as a JSON object in ~/.config/cyberark-ccp/preferences.json. The only
preference the tool itself writes is CONFIG_PATH_KEY, the config file chosen
with `ccp config set-path`.
"""
import os
import json
import logging
import tempfile
from pathlib import Path
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

PREFERENCES_DIR = Path.home() / ".config" / "cyberark-ccp"
PREFERENCES_FILE = PREFERENCES_DIR / "preferences.json"

CONFIG_PATH_KEY = "config_path"


def _load_preferences() -> Dict[str, Any]:
    """
    Read the preferences file.

    Returns:
        Preferences mapping; empty if the file is missing, unreadable or
        not a JSON object
    """
    try:
        raw = PREFERENCES_FILE.read_text()
    except FileNotFoundError:
        return {}
    except OSError as e:
        logger.error(f"Failed to read preferences file {PREFERENCES_FILE}: {e}")
        return {}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse preferences file {PREFERENCES_FILE}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"Ignoring preferences file {PREFERENCES_FILE}: expected a JSON object")
        return {}
    return data


def _save_preferences(preferences: Dict[str, Any]) -> None:
    # Replace the file in one step so readers never see a partial write
    PREFERENCES_DIR.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=PREFERENCES_DIR, prefix=".preferences-", suffix=".json")
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(preferences, f, indent=2, sort_keys=True)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, PREFERENCES_FILE)
    except OSError as e:
        logger.error(f"Failed to save preferences to {PREFERENCES_FILE}: {e}")
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def get_preference(key: str) -> Optional[str]:
    return _load_preferences().get(key)


def set_preference(key: str, value: str) -> None:
    """
    Store a preference, keeping every other key.

    Raises:
        OSError: If the preferences file cannot be written
    """
    preferences = _load_preferences()
    preferences[key] = value
    _save_preferences(preferences)
    logger.info(f"Preference '{key}' set to: {value}")


def clear_preference(key: str) -> bool:
    """
    Remove a preference.

    Returns:
        True if the key was present
    """
    preferences = _load_preferences()
    if preferences.pop(key, None) is None:
        logger.debug(f"Preference '{key}' not set, nothing to clear")
        return False
    _save_preferences(preferences)
    logger.info(f"Preference '{key}' cleared")
    return True
