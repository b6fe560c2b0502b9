import json

import pytest
import requests

from domain.errors import MapConfigError
from domain.models import MapAssetDescriptor
from services import map_assets
from services.map_assets import DEFAULT_MAP_ASSETS, MapAssetManager, validate_descriptors
from settings import Settings
from storage.file_storage import join_site_url


class FakeStreamResponse:
    def __init__(self, body: bytes, status_code: int = 200, fail_after_first_chunk: bool = False):
        self.body = body
        self.status_code = status_code
        self.fail_after_first_chunk = fail_after_first_chunk
        self.closed = False

    def iter_content(self, chunk_size=1):
        yield self.body[: len(self.body) // 2]
        if self.fail_after_first_chunk:
            raise requests.ConnectionError("connection reset")
        yield self.body[len(self.body) // 2:]

    def close(self):
        self.closed = True


def _collection(*names):
    return {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"name": n}, "geometry": None} for n in names
        ],
    }


def _body(data):
    return json.dumps(data, ensure_ascii=False).encode("utf-8")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        public_dir=tmp_path / "public",
        bundled_assets_dir=tmp_path / "bundled",
        site_root="/",
    )


@pytest.fixture
def http(monkeypatch):
    routes = {}
    calls = []

    def fake_get(url, headers=None, timeout=None, stream=False):
        calls.append(url)
        resp = routes.get(url)
        if resp is None:
            raise requests.ConnectionError(f"no route for {url}")
        if isinstance(resp, Exception):
            raise resp
        return resp

    monkeypatch.setattr(map_assets._session, "get", fake_get)
    fake_get.routes = routes
    fake_get.calls = calls
    return fake_get


def _url(map_type):
    return DEFAULT_MAP_ASSETS[map_type].url


def test_join_site_url_collapses_slashes():
    assert join_site_url("/", "assets/charts/maps", "world.json") == "/assets/charts/maps/world.json"
    assert join_site_url("/blog/", "/assets/charts/maps/", "world.json") == "/blog/assets/charts/maps/world.json"
    assert join_site_url("blog", "assets", "x.json") == "/blog/assets/x.json"
    assert join_site_url("", "assets", "x.json") == "/assets/x.json"


def test_download_then_reuse(settings, http):
    http.routes[_url("world")] = FakeStreamResponse(_body(_collection("France")))
    manager = MapAssetManager(settings)

    assert manager.ensure("world") == "/assets/charts/maps/world.json"
    assert (settings.maps_dir / "world.json").is_file()
    assert manager.ensure("world") == "/assets/charts/maps/world.json"
    assert http.calls == [_url("world")]


def test_public_path_respects_site_root(tmp_path, http):
    settings = Settings(public_dir=tmp_path / "public", bundled_assets_dir=tmp_path / "b", site_root="/blog/")
    http.routes[_url("china")] = FakeStreamResponse(_body(_collection("北京市")))
    assert MapAssetManager(settings).ensure("china") == "/blog/assets/charts/maps/100000_full.json"


def test_bundled_copy_wins_over_download(settings, http):
    settings.bundled_assets_dir.mkdir(parents=True)
    (settings.bundled_assets_dir / "places.json").write_text('{"store": {}, "aliases": {}}')

    url = MapAssetManager(settings).ensure("places")

    assert url == "/assets/charts/maps/places.json"
    assert http.calls == []
    assert json.loads((settings.maps_dir / "places.json").read_text()) == {"store": {}, "aliases": {}}


def test_bundled_copy_failure_falls_through_to_download(settings, http, monkeypatch):
    settings.bundled_assets_dir.mkdir(parents=True)
    (settings.bundled_assets_dir / "world.json").write_text("{}")
    http.routes[_url("world")] = FakeStreamResponse(_body(_collection("France")))
    manager = MapAssetManager(settings)

    def broken_copy(source, filename):
        raise OSError("permission denied")

    monkeypatch.setattr(manager.storage, "copy_in", broken_copy)

    assert manager.ensure("world") == "/assets/charts/maps/world.json"
    assert http.calls == [_url("world")]


def test_non_200_leaves_no_file(settings, http):
    resp = FakeStreamResponse(b"not found", status_code=404)
    http.routes[_url("world")] = resp

    assert MapAssetManager(settings).ensure("world") is None
    assert not (settings.maps_dir / "world.json").exists()
    assert resp.closed


def test_interrupted_download_leaves_no_partial_file(settings, http):
    http.routes[_url("world")] = FakeStreamResponse(_body(_collection("France")), fail_after_first_chunk=True)

    assert MapAssetManager(settings).ensure("world") is None
    assert list(settings.maps_dir.iterdir()) == []


def test_transport_error_returns_none(settings, http):
    http.routes[_url("world")] = requests.Timeout("slow")
    assert MapAssetManager(settings).ensure("world") is None


def test_unknown_map_type(settings, http):
    assert MapAssetManager(settings).ensure("mars") is None
    assert http.calls == []


def test_world_cn_end_to_end(settings, http):
    world = _collection("France", "China", "Japan")
    china = _collection("北京市", "甘肃省", "上海市")
    contour = _collection("中国")
    http.routes[_url("world")] = FakeStreamResponse(_body(world))
    http.routes[_url("china")] = FakeStreamResponse(_body(china))
    http.routes[_url("china-contour")] = FakeStreamResponse(_body(contour))

    url = MapAssetManager(settings).ensure("world-cn")

    assert url == "/assets/charts/maps/world_cn.json"
    merged = json.loads((settings.maps_dir / "world_cn.json").read_text(encoding="utf-8"))
    assert len(merged["features"]) == (3 - 1) + 3 + 1
    assert sorted(p.name for p in settings.maps_dir.iterdir()) == [
        "100000.json",
        "100000_full.json",
        "world.json",
        "world_cn.json",
    ]


def test_generated_map_fails_when_dependency_missing(settings, http):
    http.routes[_url("world")] = FakeStreamResponse(_body(_collection("France")))

    assert MapAssetManager(settings).ensure("world-cn") is None
    assert not (settings.maps_dir / "world_cn.json").exists()


def test_ensure_all_omits_failures(settings, http):
    http.routes[_url("world")] = FakeStreamResponse(_body(_collection("France")))
    paths = MapAssetManager(settings).ensure_all(["world", "china", "mars"])
    assert paths == {"world": "/assets/charts/maps/world.json"}


def test_default_descriptors_are_valid():
    order = validate_descriptors(DEFAULT_MAP_ASSETS)
    assert order.index("world") < order.index("world-cn")
    assert order.index("china-contour") < order.index("world-cn")


def test_cycle_is_rejected(settings):
    descriptors = {
        "a": MapAssetDescriptor("a", "a.json", generated=True, depends_on=("b", "c")),
        "b": MapAssetDescriptor("b", "b.json", generated=True, depends_on=("a", "c")),
        "c": MapAssetDescriptor("c", "c.json", url="https://example.com/c.json"),
    }
    with pytest.raises(MapConfigError, match="cycle"):
        MapAssetManager(settings, descriptors=descriptors)


def test_unknown_dependency_is_rejected():
    descriptors = {
        "a": MapAssetDescriptor("a", "a.json", generated=True, depends_on=("b", "missing")),
        "b": MapAssetDescriptor("b", "b.json", url="https://example.com/b.json"),
    }
    with pytest.raises(MapConfigError, match="unknown"):
        validate_descriptors(descriptors)


def test_generated_needs_base_and_overlay():
    descriptors = {
        "a": MapAssetDescriptor("a", "a.json", generated=True, depends_on=("b",)),
        "b": MapAssetDescriptor("b", "b.json", url="https://example.com/b.json"),
    }
    with pytest.raises(MapConfigError):
        validate_descriptors(descriptors)


def test_default_bundled_dir_ships_seed_store(tmp_path):
    defaults = Settings()
    assert (defaults.bundled_assets_dir / "places.json").is_file()

    settings = Settings(public_dir=tmp_path / "public", site_root="/")
    url = MapAssetManager(settings).ensure("places")

    assert url == "/assets/charts/maps/places.json"
    published = json.loads((settings.maps_dir / "places.json").read_text(encoding="utf-8"))
    assert "store" in published
