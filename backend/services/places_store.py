"""
JSON-backed store of resolved places plus an alias index.

Layout on disk:

    {
      "store":   {"<id>": {"name": ..., "coords": [lng, lat], "source": ...}},
      "aliases": {"<spelling>": "<id>"}
    }

Both mappings are written key-sorted so the file diffs cleanly between builds.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from domain.errors import StorePersistError
from domain.models import PlaceRecord, slugify_place_id

logger = logging.getLogger(__name__)


class PlaceStore:
    def __init__(self, path: os.PathLike | str):
        self.path = Path(path)
        self.records: Dict[str, PlaceRecord] = {}
        self.aliases: Dict[str, str] = {}
        self.loaded = False

    def load(self) -> None:
        """Read the backing file once; later calls are no-ops."""
        if self.loaded:
            return
        self.loaded = True
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            records = {
                place_id: PlaceRecord.from_json(place_id, raw)
                for place_id, raw in (payload.get("store") or {}).items()
            }
            aliases = {str(k): str(v) for k, v in (payload.get("aliases") or {}).items()}
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.error("[PLACES] failed to read %s, using empty store: %s", self.path, exc)
            return
        self.records = records
        self.aliases = aliases
        logger.debug("[PLACES] loaded %d places, %d aliases", len(records), len(aliases))

    def get(self, name: str) -> Optional[PlaceRecord]:
        self.load()
        place_id = self.aliases.get(name)
        if place_id is not None and place_id in self.records:
            return self.records[place_id]
        return self.records.get(name)

    def set(self, name: str, record: PlaceRecord) -> str:
        """Upsert `record` and alias `name` (and its display name) to it. Returns the id."""
        self.load()
        place_id = record.id or slugify_place_id(name)
        self.records[place_id] = PlaceRecord(
            display_name=record.display_name or name,
            coords=record.coords,
            source=record.source,
            id=place_id,
        )
        self.aliases[name] = place_id
        if record.display_name and record.display_name != name:
            self.aliases[record.display_name] = place_id
        return place_id

    def add_alias(self, name: str, place_id: str) -> None:
        if place_id not in self.records:
            raise KeyError(place_id)
        self.aliases[name] = place_id

    def to_json(self) -> dict:
        return {
            "store": {k: self.records[k].to_json() for k in sorted(self.records)},
            "aliases": {
                k: self.aliases[k] for k in sorted(self.aliases) if self.aliases[k] in self.records
            },
        }

    def save(self) -> None:
        """Atomically rewrite the backing file. Raises StorePersistError."""
        body = json.dumps(self.to_json(), ensure_ascii=False, indent=2) + "\n"
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorePersistError(f"could not write {self.path}: {exc}") from exc
