#!/usr/bin/env python3
"""
Local Run Store
===============

Best-effort key/value store for run snapshots on this device. Each key is
one small file holding the raw string value, grouped by session namespace.

Storage structure:
    runs/
    ├── anonymous/
    │   ├── connections%3Aexample.json
    │   └── connections%3Ap1.json
    └── 3f2c9a.../
        └── ...

Reads and writes never raise: a full disk or a read-only directory just
means the local copy is skipped.
"""

from pathlib import Path
from urllib.parse import quote


class LocalRunStore:
    def __init__(self, base_path='runs', namespace='anonymous'):
        self.base_path = Path(base_path)
        self.namespace = self._safe_name(namespace or 'anonymous')

    @staticmethod
    def _safe_name(name):
        """Percent-encode a key or namespace into one distinct file name."""
        return quote(str(name), safe='').replace('.', '%2E')

    def _get_key_path(self, key):
        """Get the file path for a specific key."""
        return self.base_path / self.namespace / f"{self._safe_name(key)}.json"

    def get(self, key):
        """Return the stored string for `key`, or None."""
        try:
            key_file = self._get_key_path(key)
            if not key_file.exists():
                return None
            return key_file.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError):
            return None

    def set(self, key, value):
        """Store `value` under `key`. Returns False if the write was dropped."""
        try:
            key_file = self._get_key_path(key)
            key_file.parent.mkdir(parents=True, exist_ok=True)
            key_file.write_text(str(value), encoding='utf-8')
            return True
        except OSError:
            return False

