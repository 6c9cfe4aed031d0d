"""User preferences stored as a JSON document in the platformdirs config dir."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

logger = logging.getLogger(__name__)

APP_NAME = "jsm-stats"
CONFIG_FILENAME = "config.json"

_DEFAULTS: dict[str, Any] = {
    "jira_url": "",                 # e.g. "https://company.atlassian.net"
    "jira_email": "",               # account email for basic auth
    "project_key": "",              # last selected service desk project
    "time_period": "7d",            # TimePeriod.id
    "refresh_interval_minutes": 5,
    "poll_interval_minutes": 1,
    "max_retries": 3,
    "fetch_timeout_seconds": 120,
    "retry_countdown_seconds": 30,
}


class ConfigManager:
    """Preferences merged over built-in defaults.

    Values read from disk override the defaults key by key, so a file written
    by an older version still yields every setting.  Every mutation is
    written back immediately; a failed write is logged and the in-memory
    value kept.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self._dir = config_dir or Path(user_config_dir(APP_NAME, appauthor=False))
        self._path = self._dir / CONFIG_FILENAME
        self._data: dict[str, Any] = dict(_DEFAULTS)
        self._data.update(self._read())
        logger.debug("Config loaded from %s", self._path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def data(self) -> dict[str, Any]:
        return dict(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def get_int(self, key: str, minimum: int = 0) -> int:
        """Numeric setting; unusable or too small values yield the default."""
        value = self._data.get(key)
        try:
            number = int(value)
        except (TypeError, ValueError):
            number = None
        if number is None or number < minimum:
            logger.warning("Ignoring invalid value %r for %s", value, key)
            return int(_DEFAULTS[key])
        return number

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: dict[str, Any]) -> None:
        self._data.update(values)
        self._write()

    def reset(self) -> None:
        logger.info("Resetting config to defaults")
        self._data = dict(_DEFAULTS)
        self._write()

    def _read(self) -> dict[str, Any]:
        try:
            stored = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load config from %s: %s", self._path, exc)
            return {}
        if not isinstance(stored, dict):
            logger.warning("Ignoring config %s: not a JSON object", self._path)
            return {}
        return stored

    def _write(self) -> None:
        tmp = self._path.with_suffix(".tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self._data, indent=2, default=str), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            logger.warning("Failed to save config to %s: %s", self._path, exc)
