import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Basic settings helper to read environment configuration.

BACKEND_ROOT = Path(__file__).resolve().parent


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


@dataclass(frozen=True)
class Settings:
    """Immutable configuration built once per process and passed explicitly."""

    amap_key: str | None = None
    nominatim_user_agent: str = "next-charts-geo/0.1 (contact: example@example.com)"
    nominatim_referer: str | None = None
    nominatim_min_interval: float = 1.1
    amap_timeout: float = 5.0
    nominatim_timeout: float = 10.0
    download_timeout: float = 30.0
    max_concurrency: int = 5
    lookups_enabled: bool = True
    places_store_path: Path = Path("source") / "_data" / "places.json"
    public_dir: Path = Path("public")
    site_root: str = "/"
    maps_url_dir: str = "assets/charts/maps"
    bundled_assets_dir: Path = BACKEND_ROOT / "services" / "assets"

    @property
    def maps_dir(self) -> Path:
        """Local directory the map files are materialized into."""
        return self.public_dir / self.maps_url_dir

    @classmethod
    def from_env(cls, env_file: str | os.PathLike | None = None) -> "Settings":
        # Load environment variables from a .env file (optional) before reading them
        load_dotenv(env_file or BACKEND_ROOT / ".env")
        defaults = cls()
        return cls(
            amap_key=os.getenv("AMAP_KEY") or None,
            nominatim_user_agent=os.getenv("NOMINATIM_USER_AGENT") or defaults.nominatim_user_agent,
            nominatim_referer=os.getenv("NOMINATIM_REFERER") or None,
            nominatim_min_interval=_as_float(
                os.getenv("NOMINATIM_MIN_INTERVAL"), defaults.nominatim_min_interval
            ),
            amap_timeout=_as_float(os.getenv("AMAP_TIMEOUT"), defaults.amap_timeout),
            nominatim_timeout=_as_float(os.getenv("NOMINATIM_TIMEOUT"), defaults.nominatim_timeout),
            download_timeout=_as_float(os.getenv("MAP_DOWNLOAD_TIMEOUT"), defaults.download_timeout),
            max_concurrency=_as_int(os.getenv("GEO_MAX_CONCURRENCY"), defaults.max_concurrency),
            lookups_enabled=_as_bool(os.getenv("GEO_LOOKUPS_ENABLED"), True),
            places_store_path=Path(os.getenv("PLACES_STORE_PATH") or defaults.places_store_path),
            public_dir=Path(os.getenv("PUBLIC_DIR") or defaults.public_dir),
            site_root=os.getenv("SITE_ROOT") or defaults.site_root,
            maps_url_dir=os.getenv("MAP_ASSETS_URL_DIR") or defaults.maps_url_dir,
            bundled_assets_dir=Path(os.getenv("BUNDLED_ASSETS_DIR") or defaults.bundled_assets_dir),
        )


def load_settings() -> Settings:
    return Settings.from_env()
