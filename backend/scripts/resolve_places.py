"""Resolve place names and publish map files for one build.

Usage:
    python -m scripts.resolve_places 张掖市 Singapore PEK --map world-cn

Prints a JSON document with the resolved coordinates (name -> [lng, lat]) and
the public URLs of the requested maps. Names that cannot be resolved are
logged and left out; the exit status stays 0 so a build can carry on.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from domain.errors import MapConfigError
from services.map_assets import MapAssetManager, validate_descriptors
from services.place_resolver import PlaceResolver
from settings import load_settings

logger = logging.getLogger("resolve_places")


def _read_names(path: Path) -> List[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.startswith("#")]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve place names and publish map files.")
    parser.add_argument("names", nargs="*", help="Place names, city names or airport codes.")
    parser.add_argument("--names-file", type=Path, help="File with one place name per line.")
    parser.add_argument("--map", dest="maps", action="append", default=[], help="Map type to publish (repeatable).")
    parser.add_argument("--store", type=Path, help="Override PLACES_STORE_PATH.")
    parser.add_argument("--public-dir", type=Path, help="Override PUBLIC_DIR.")
    parser.add_argument("--site-root", help="Override SITE_ROOT.")
    parser.add_argument("--offline", action="store_true", help="Only answer from the place store.")
    parser.add_argument("--refresh-maps", action="store_true", help="Delete published map files first.")
    parser.add_argument("--list-maps", action="store_true", help="List known map types and exit.")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings()
    overrides = {}
    if args.store:
        overrides["places_store_path"] = args.store
    if args.public_dir:
        overrides["public_dir"] = args.public_dir
    if args.site_root:
        overrides["site_root"] = args.site_root
    if args.offline:
        overrides["lookups_enabled"] = False
    settings = dataclasses.replace(settings, **overrides)

    try:
        assets = MapAssetManager(settings)
    except MapConfigError as exc:
        logger.error("invalid map configuration: %s", exc)
        return 1

    if args.list_maps:
        for map_type in validate_descriptors(assets.descriptors):
            desc = assets.descriptors[map_type]
            source = "generated from " + ", ".join(desc.depends_on) if desc.generated else desc.url
            print(f"{map_type}\t{desc.filename}\t{source}")
        return 0

    names = list(args.names)
    if args.names_file:
        names.extend(_read_names(args.names_file))

    resolver = PlaceResolver.from_settings(settings)
    resolver.register_many(names)
    report = resolver.resolve()
    if report.save_error:
        logger.warning("place store not saved: %s", report.save_error)

    if args.refresh_maps:
        assets.storage.clear()
    maps = assets.ensure_all(args.maps)

    output = {
        "places": resolver.coords_for(names),
        "maps": maps,
        "unresolved": sorted(report.unresolved),
    }
    json.dump(output, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
