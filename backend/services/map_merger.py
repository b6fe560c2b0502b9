"""
Build the composite world map with China's provinces swapped in.

The base world file's China polygon is dropped, province features from the
overlay are appended (tagged `_is_province`), and the optional national
outline is appended last under the reserved name `China_Border` (tagged
`_is_contour`) so the renderer can draw it as a border without fill.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Union

from domain.errors import MergeError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

CHINA_ALIASES: FrozenSet[str] = frozenset({"China", "People's Republic of China", "CN", "CHN"})
CONTOUR_NAME = "China_Border"
PROVINCE_FLAG = "_is_province"
CONTOUR_FLAG = "_is_contour"


def _read_collection(path: PathLike, label: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise MergeError(f"cannot read {label} file {path}: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("features"), list):
        raise MergeError(f"{label} file {path} is not a GeoJSON FeatureCollection")
    for index, feature in enumerate(data["features"]):
        if not isinstance(feature, dict):
            raise MergeError(f"{label} file {path}: feature {index} is not an object")
        if feature.get("properties") is not None and not isinstance(feature["properties"], dict):
            raise MergeError(f"{label} file {path}: feature {index} has malformed properties")
    return data


def _properties(feature: Dict[str, Any]) -> Dict[str, Any]:
    props = feature.get("properties")
    if not isinstance(props, dict):
        props = {}
        feature["properties"] = props
    return props


def _is_replaced(feature: Dict[str, Any], aliases: FrozenSet[str]) -> bool:
    props = feature.get("properties") or {}
    name = props.get("name")
    feature_id = feature.get("id") or props.get("id")
    # ids may legally be numbers; lists or objects never match a country alias
    return any(isinstance(v, str) and v in aliases for v in (name, feature_id))


def merge_features(
    base: Dict[str, Any],
    overlay: Dict[str, Any],
    contour: Optional[Dict[str, Any]] = None,
    aliases: FrozenSet[str] = CHINA_ALIASES,
) -> Dict[str, Any]:
    """Pure merge of already-parsed collections. Returns a new collection."""
    kept = [f for f in base["features"] if not _is_replaced(f, aliases)]
    removed = len(base["features"]) - len(kept)
    if removed == 0:
        logger.warning("[MAPS] country feature not found in base map (or already removed), proceeding")
    else:
        logger.debug("[MAPS] removed %d base features", removed)

    features: List[Dict[str, Any]] = list(kept)
    for feature in overlay["features"]:
        feature = dict(feature)
        feature["properties"] = dict(_properties(feature))
        feature["properties"][PROVINCE_FLAG] = True
        features.append(feature)

    if contour is not None:
        for feature in contour.get("features") or []:
            feature = dict(feature)
            feature["properties"] = dict(_properties(feature))
            feature["properties"]["name"] = CONTOUR_NAME
            feature["properties"][CONTOUR_FLAG] = True
            features.append(feature)

    merged = {k: v for k, v in base.items() if k != "features"}
    merged["type"] = "FeatureCollection"
    merged["features"] = features
    return merged


def _write_json_atomic(data: Dict[str, Any], output_path: PathLike) -> None:
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{out.name}.", suffix=".tmp", dir=str(out.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, separators=(",", ":"))
        os.replace(tmp_name, out)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def merge(
    base_path: PathLike,
    overlay_path: PathLike,
    contour_path: Optional[PathLike],
    output_path: PathLike,
) -> bool:
    """Merge map files on disk. Returns False (and writes nothing) on failure."""
    logger.info("[MAPS] merging %s with %s", base_path, overlay_path)
    try:
        base = _read_collection(base_path, "base")
        overlay = _read_collection(overlay_path, "overlay")
        contour = None
        if contour_path and Path(contour_path).exists():
            contour = _read_collection(contour_path, "contour")
        merged = merge_features(base, overlay, contour)
        _write_json_atomic(merged, output_path)
    except (MergeError, OSError) as exc:
        logger.error("[MAPS] map merge failed: %s", exc)
        return False
    logger.info("[MAPS] map merged successfully: %s (%d features)", output_path, len(merged["features"]))
    return True
