"""
Make map boundary files available under the public assets directory.

For each map type the manager tries, in order: reuse a file that is already
published, copy a copy bundled with the package, download it, or (for
generated types) build it from its component maps.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import requests

from domain.errors import MapConfigError
from domain.models import MapAssetDescriptor
from services import map_merger
from settings import Settings
from storage.file_storage import FileStorage

logger = logging.getLogger(__name__)
_session = requests.Session()

DATAV_BOUND_BASE = "https://geo.datav.aliyun.com/areas_v3/bound/"
ECHARTS_MAP_BASE = "https://fastly.jsdelivr.net/npm/echarts/map/json/"


def _descriptors(*items: MapAssetDescriptor) -> Dict[str, MapAssetDescriptor]:
    return {d.map_type: d for d in items}


DEFAULT_MAP_ASSETS: Dict[str, MapAssetDescriptor] = _descriptors(
    MapAssetDescriptor("world", "world.json", url=ECHARTS_MAP_BASE + "world.json"),
    MapAssetDescriptor("china", "100000_full.json", url=ECHARTS_MAP_BASE + "china.json"),
    MapAssetDescriptor("china-contour", "100000.json", url=DATAV_BOUND_BASE + "100000.json"),
    MapAssetDescriptor(
        "places",
        "places.json",
        url="https://fastly.jsdelivr.net/gh/moshuchina/hexo-next-charts@main/lib/assets/places.json",
    ),
    MapAssetDescriptor(
        "world-cn",
        "world_cn.json",
        generated=True,
        depends_on=("world", "china", "china-contour"),
    ),
)


def validate_descriptors(descriptors: Mapping[str, MapAssetDescriptor]) -> List[str]:
    """
    Check the descriptor graph and return map types in dependency order.

    Raises MapConfigError on unknown dependencies, cycles, or generated
    descriptors that do not name a base and an overlay.
    """
    for map_type, desc in descriptors.items():
        if desc.map_type != map_type:
            raise MapConfigError(f"descriptor key {map_type!r} does not match {desc.map_type!r}")
        if desc.generated:
            if not 2 <= len(desc.depends_on) <= 3:
                raise MapConfigError(
                    f"generated map {map_type!r} needs a base, an overlay and an optional contour"
                )
        elif desc.depends_on:
            raise MapConfigError(f"map {map_type!r} is not generated but lists dependencies")
        for dep in desc.depends_on:
            if dep not in descriptors:
                raise MapConfigError(f"map {map_type!r} depends on unknown map {dep!r}")

    order: List[str] = []
    done: set = set()

    def visit(map_type: str, path: List[str]) -> None:
        if map_type in done:
            return
        if map_type in path:
            cycle = " -> ".join(path[path.index(map_type):] + [map_type])
            raise MapConfigError(f"map dependency cycle: {cycle}")
        for dep in descriptors[map_type].depends_on:
            visit(dep, path + [map_type])
        done.add(map_type)
        order.append(map_type)

    for map_type in sorted(descriptors):
        visit(map_type, [])
    return order


class MapAssetManager:
    def __init__(
        self,
        settings: Settings,
        descriptors: Optional[Mapping[str, MapAssetDescriptor]] = None,
        storage: Optional[FileStorage] = None,
    ):
        self.settings = settings
        self.descriptors: Dict[str, MapAssetDescriptor] = dict(
            DEFAULT_MAP_ASSETS if descriptors is None else descriptors
        )
        validate_descriptors(self.descriptors)
        self.storage = storage or FileStorage(
            settings.public_dir, settings.maps_url_dir, site_root=settings.site_root
        )
        self.headers = {"User-Agent": settings.nominatim_user_agent}

    def ensure(self, map_type: str) -> Optional[str]:
        """Return the public URL of the map file, or None if it cannot be provided."""
        desc = self.descriptors.get(map_type)
        if desc is None:
            logger.warning("[MAPS] unknown map type: %s", map_type)
            return None
        if self._materialize(desc) is None:
            return None
        return self.storage.get_public_url(desc.filename)

    def ensure_all(self, map_types: Iterable[str]) -> Dict[str, str]:
        paths: Dict[str, str] = {}
        for map_type in map_types:
            url = self.ensure(map_type)
            if url:
                paths[map_type] = url
        return paths

    def _materialize(self, desc: MapAssetDescriptor) -> Optional[Path]:
        if desc.generated:
            return self._generate(desc)

        dest = self.storage.get_local_path(desc.filename)
        if dest.is_file():
            logger.debug("[MAPS] using published %s", dest)
            return dest
        self.storage.ensure_root()

        bundled = Path(self.settings.bundled_assets_dir) / desc.filename
        if bundled.is_file():
            try:
                self.storage.copy_in(bundled, desc.filename)
                logger.info("[MAPS] used bundled asset for %s", desc.map_type)
                return dest
            except OSError as exc:
                logger.warning("[MAPS] failed to copy bundled asset %s: %s", desc.map_type, exc)

        if desc.url:
            if self._download(desc):
                return dest
            return None

        logger.error("[MAPS] no source available for %s", desc.map_type)
        return None

    def _generate(self, desc: MapAssetDescriptor) -> Optional[Path]:
        sources: List[Path] = []
        for dep in desc.depends_on:
            path = self._materialize(self.descriptors[dep])
            if path is None:
                logger.error("[MAPS] cannot build %s: dependency %s unavailable", desc.map_type, dep)
                return None
            sources.append(path)

        base, overlay = sources[0], sources[1]
        contour = sources[2] if len(sources) > 2 else None
        dest = self.storage.get_local_path(desc.filename)
        if not map_merger.merge(base, overlay, contour, dest):
            return None
        return dest

    def _download(self, desc: MapAssetDescriptor) -> bool:
        logger.info("[MAPS] downloading GeoJSON for %s", desc.map_type)
        try:
            resp = _session.get(
                desc.url, headers=self.headers, timeout=self.settings.download_timeout, stream=True
            )
        except requests.RequestException as exc:
            logger.error("[MAPS] download failed for %s: %s", desc.map_type, exc)
            return False
        try:
            if resp.status_code != 200:
                logger.error(
                    "[MAPS] download failed for %s: HTTP %s", desc.map_type, resp.status_code
                )
                return False
            self.storage.save_chunks(desc.filename, resp.iter_content(chunk_size=64 * 1024))
        except (requests.RequestException, OSError) as exc:
            logger.error("[MAPS] download failed for %s: %s", desc.map_type, exc)
            return False
        finally:
            resp.close()
        logger.info("[MAPS] cached %s map", desc.map_type)
        return True
