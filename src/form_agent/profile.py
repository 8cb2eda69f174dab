"""Read-only applicant profile consulted for direct fills and the terms signature."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

from .identifiers import sanitize_identifier

logger = logging.getLogger(__name__)

FULL_NAME_KEY = "Name"


class ProfileStore:
    """Flat string-keyed profile, loaded once per run and never mutated."""

    def __init__(self, data: Optional[Mapping[str, str]] = None) -> None:
        self._data: Dict[str, str] = {str(k): str(v) for k, v in (data or {}).items()}

    @classmethod
    def load(cls, path: Path) -> "ProfileStore":
        """Load ``key: value`` lines; values may themselves contain colons."""
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not read profile file %s: %s", path, exc)
            return cls()

        data: Dict[str, str] = {}
        for line in text.splitlines():
            if ":" not in line:
                continue
            key, value = line.split(":", 1)
            key = key.strip()
            if key:
                data[key] = value.strip()
        logger.info("Profile loaded from %s (%s keys)", path, len(data))
        return cls(data)

    def __len__(self) -> int:
        return len(self._data)

    def __bool__(self) -> bool:
        return bool(self._data)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._data)

    @property
    def full_name(self) -> Optional[str]:
        value = self._data.get(FULL_NAME_KEY)
        return value or None

    def lookup(self, identifier: str, name: Optional[str] = None) -> Optional[str]:
        """Case-insensitive match of a profile key against an identifier or control name."""
        wanted = {sanitize_identifier(identifier).lower()}
        if name:
            wanted.add(name.strip().lower())
        wanted.discard("")
        for key, value in self._data.items():
            if key.lower() in wanted or sanitize_identifier(key).lower() in wanted:
                return value
        return None

    def summary(self) -> str:
        """Deterministic serialization used in oracle prompts."""
        return json.dumps(self._data, sort_keys=True, ensure_ascii=False)
