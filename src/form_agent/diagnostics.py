"""Append-only outcome log, URL ledgers and markup snapshots."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

from .backend import PageBackend
from .errors import BackendError

logger = logging.getLogger(__name__)


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class OutcomeLog:
    """Append structured events to a JSONL file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fp = path.open("a", encoding="utf-8")

    def write(self, event: Dict[str, Any]) -> None:
        payload = dict(event)
        payload.setdefault("timestamp", _utc_stamp())
        self._fp.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        self._fp.flush()

    def close(self) -> None:
        try:
            self._fp.close()
        except OSError:
            pass


class UrlLedger:
    """Newline-delimited set of URLs persisted across runs."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> Set[str]:
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return set()
        except OSError as exc:
            logger.warning("Could not read ledger %s: %s", self.path, exc)
            return set()
        return {line.strip() for line in lines if line.strip()}

    def append(self, url: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(url + "\n")
        except OSError as exc:
            logger.error("Could not append %s to ledger %s: %s", url, self.path, exc)


def snapshot_name(prefix: str, label: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "", label) or "field"
    return f"{prefix}_{slug}_{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S%f')}"


async def save_markup_snapshot(
    backend: PageBackend,
    out_dir: Path,
    name: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Path:
    """Persist the full page markup plus a JSON sidecar for offline diagnosis.

    Failures are recorded in the sidecar, never raised.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    metadata: Dict[str, Any] = {
        "name": name,
        "url": getattr(backend, "url", None),
        "timestamp": _utc_stamp(),
        "extra": dict(extra or {}),
    }

    html_path = out_dir / f"{name}.html"
    try:
        html_path.write_text(await backend.content(), encoding="utf-8")
    except (BackendError, OSError) as exc:
        metadata["extra"]["html_error"] = str(exc)

    try:
        (out_dir / f"{name}.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not write snapshot metadata for %s: %s", name, exc)
    logger.info("Saved markup snapshot %s", html_path)
    return html_path
