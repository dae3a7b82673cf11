"""
Application settings that survive restarts (currently only keep-in-tray).

Kept apart from the auth session: separate file, separate lock.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path

from uom_auth import DATA_DIR


class AppSettingsStore:
    """Loads and saves settings.json; missing or unreadable files give defaults."""

    SETTINGS_FILE = DATA_DIR / 'settings.json'
    DEFAULTS = {'keep_in_tray': False}

    def __init__(self, settings_file: Path | None = None) -> None:
        self.settings_file = Path(settings_file) if settings_file else self.SETTINGS_FILE
        self._lock = threading.Lock()
        self._data = dict(self.DEFAULTS)

    def load(self) -> None:
        """Load settings from disk, falling back to defaults on any error."""
        try:
            data = json.loads(self.settings_file.read_bytes())
        except (ValueError, OSError):
            data = {}

        loaded = dict(self.DEFAULTS)
        if isinstance(data, dict) and isinstance(data.get('keep_in_tray'), bool):
            loaded['keep_in_tray'] = data['keep_in_tray']

        with self._lock:
            self._data = loaded

    def _save(self, data: dict) -> None:
        self.settings_file.parent.mkdir(parents=True, exist_ok=True)
        self.settings_file.write_text(json.dumps(data))

    @property
    def keep_in_tray(self) -> bool:
        with self._lock:
            return self._data['keep_in_tray']

    def set_keep_in_tray(self, value: bool) -> None:
        """Persist the flag, then update it in memory; OSError propagates and leaves both unchanged."""
        with self._lock:
            updated = {**self._data, 'keep_in_tray': bool(value)}
            self._save(updated)
            self._data = updated
