"""File-backed store with freshness-aware envelopes.

Data lives under a base directory split into tiers by how it changes:
  - config/: Policy configuration document (versioned, rewritten on update)
  - live/: Latest weather readings and indicator snapshots, one file per site
  - history/: Append-only JSON Lines logs (capacity adjustments, alerts,
    indicator history)

Every JSON document is wrapped in a metadata envelope with ``valid_until`` so
readers can tell a fresh value from a stale one without parsing the payload.
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 (used at runtime)
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class DataStore:
    """Manages read/write of enveloped JSON files and append-only logs."""

    def __init__(self, base_dir: Path) -> None:
        self.base = base_dir
        self.config = base_dir / "config"
        self.live = base_dir / "live"
        self.history = base_dir / "history"
        self._append_lock = threading.Lock()

    def read(self, path: Path) -> Any | None:
        """Read data payload from a metadata-enveloped JSON file.

        Returns the ``data`` field, or None if the file doesn't exist.

        Raises:
            json.JSONDecodeError: If the file exists but is not valid JSON.
        """
        envelope = self.read_raw(path)
        if envelope is None:
            return None
        return envelope.get("data", envelope)

    def read_raw(self, path: Path) -> dict[str, Any] | None:
        """Read the full envelope (meta + data) from a JSON file."""
        full = self._resolve(path)
        if not full.exists():
            return None
        with full.open() as f:
            result: dict[str, Any] = json.load(f)
        return result

    def write(
        self,
        path: Path,
        data: Any,
        source: str,
        valid_until: datetime | None = None,
        **params: Any,
    ) -> Path:
        """Write data wrapped in a metadata envelope.

        The file is written to a temporary sibling and renamed into place so
        readers never observe a half-written document.

        Args:
            path: Relative path under base_dir (e.g. ``live/weather/site-1.json``).
            data: JSON-serializable payload stored under the ``data`` key.
            source: Data source identifier (e.g. ``"open-meteo.com"``).
            valid_until: Expiry timestamp. None means no freshness guarantee.
            **params: Extra metadata fields (version, site id, ...).

        Returns:
            Absolute path of the written file.
        """
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)

        meta: dict[str, Any] = {
            "source": source,
            "fetched_at": datetime.now(UTC).isoformat(),
        }
        if valid_until is not None:
            meta["valid_until"] = valid_until.isoformat()
        if params:
            meta.update(params)

        envelope = {"meta": meta, "data": data}
        tmp = full.with_suffix(full.suffix + ".tmp")
        with tmp.open("w") as f:
            json.dump(envelope, f, indent=2, default=str)
        tmp.replace(full)

        return full

    def append(self, path: Path, record: dict[str, Any]) -> Path:
        """Append one record to a JSON Lines log. Existing lines are never rewritten."""
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, default=str)
        with self._append_lock, full.open("a") as f:
            f.write(line + "\n")
        return full

    def iter_lines(self, path: Path) -> Iterator[dict[str, Any]]:
        """Yield the records of a JSON Lines log one at a time, oldest first."""
        full = self._resolve(path)
        if not full.exists():
            return
        with full.open() as f:
            for line in f:
                line = line.strip()
                if line:
                    yield json.loads(line)

    def read_lines(self, path: Path) -> list[dict[str, Any]]:
        """Read every record of a JSON Lines log, oldest first. Missing log → []."""
        return list(self.iter_lines(path))

    def delete(self, path: Path) -> bool:
        """Remove a stored file. Returns False if it was not there."""
        full = self._resolve(path)
        if not full.exists():
            return False
        full.unlink()
        return True

    def _resolve(self, path: Path) -> Path:
        full = self.base / path if not path.is_absolute() else path
        try:
            full.resolve().relative_to(self.base.resolve())
        except ValueError:
            msg = f"Path escapes store base directory: {path}"
            raise ValueError(msg) from None
        return full

    def is_fresh(self, path: Path, now: datetime | None = None) -> bool:
        """Check if a file exists and hasn't expired.

        Returns False if the file is missing, has no ``valid_until``, or
        the expiry time has passed.
        """
        envelope = self.read_raw(path)
        if envelope is None:
            return False

        valid_until = envelope.get("meta", {}).get("valid_until")
        if valid_until is None:
            return False

        expiry = datetime.fromisoformat(valid_until)
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=UTC)
        return (now or datetime.now(UTC)) < expiry
