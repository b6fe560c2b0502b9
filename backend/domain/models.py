"""
Core domain models for place resolution and map assets.
These are framework-agnostic and can be used across all services.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import re

COORD_DECIMALS = 6
AUTO_SOURCE = "auto"

_WHITESPACE_RE = re.compile(r"\s+")


def slugify_place_id(name: str) -> str:
    """Canonical id for a place name: lower-cased, whitespace runs become underscores."""
    return _WHITESPACE_RE.sub("_", name.lower())


def round_coords(lng: float, lat: float) -> Tuple[float, float]:
    return (round(float(lng), COORD_DECIMALS), round(float(lat), COORD_DECIMALS))


class PlaceSource(str, Enum):
    """Which backend produced a place record."""
    AMAP = "amap"
    OSM = "osm"
    AUTO = AUTO_SOURCE


class ResolutionState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"


@dataclass(frozen=True)
class PlaceRecord:
    """A resolved place. Coordinates are (lng, lat) in WGS84 at rest."""
    display_name: str
    coords: Tuple[float, float]
    source: str = AUTO_SOURCE
    id: Optional[str] = None  # only set when a provider supplies its own id

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.display_name,
            "coords": [self.coords[0], self.coords[1]],
            "source": self.source,
        }

    @classmethod
    def from_json(cls, place_id: str, raw: Dict[str, Any]) -> "PlaceRecord":
        # Older stores wrote the display name as `name_cn`
        name = raw.get("name") or raw.get("name_cn") or place_id
        lng, lat = raw["coords"]
        return cls(
            display_name=str(name),
            coords=(float(lng), float(lat)),
            source=str(raw.get("source") or AUTO_SOURCE),
            id=place_id,
        )


@dataclass(frozen=True)
class MapAssetDescriptor:
    """
    Static description of one map type.

    Either `url` points at a remote GeoJSON source, or `generated` is set and
    `depends_on` lists the component map types, in merge order
    (base, overlay, optional contour).
    """
    map_type: str
    filename: str
    url: Optional[str] = None
    generated: bool = False
    depends_on: Tuple[str, ...] = ()


@dataclass
class ResolutionReport:
    """Outcome of one resolution pass."""
    cached: int = 0
    resolved: int = 0
    dispatched: int = 0
    unresolved: List[str] = field(default_factory=list)
    skipped: bool = False  # another pass was already running
    save_error: Optional[str] = None

    @property
    def saved(self) -> bool:
        return self.resolved > 0 and self.save_error is None
