"""Tests for file readers and the density-layer download."""

from __future__ import annotations

import json
from pathlib import Path

import geopandas as gpd
import pandas as pd
import pytest
import requests
from shapely.geometry import box

from polling_distance.config import FetchParams
from polling_distance.data import io as io_mod
from polling_distance.data.io import fetch_wfs_layer, load_density_blocks, read_any, stdcols
from polling_distance.errors import DatasetError, DensityFetchError

URL = "https://wfs.example.test/ewdichte"

FEATURES = json.dumps(
    {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"EW2021": 120},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[390000, 5815000], [390100, 5815000], [390100, 5815100], [390000, 5815100], [390000, 5815000]]],
                },
            }
        ],
    }
).encode("utf-8")


class FakeResponse:
    def __init__(self, status_code: int, content: bytes = b""):
        self.status_code = status_code
        self.content = content

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(io_mod.time, "sleep", lambda s: None)


def _queue(monkeypatch, responses):
    calls = []

    def fake_get(self, url, params=None, timeout=None):
        calls.append({"url": url, "params": params, "timeout": timeout})
        item = responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(requests.Session, "get", fake_get)
    return calls


def test_stdcols_normalizes_headers_but_keeps_geometry() -> None:
    df = pd.DataFrame({" Wahlberechtigte insgesamt ": [1], "Wählende": [1], "geometry": [None]})

    assert list(stdcols(df).columns) == ["wahlberechtigte_insgesamt", "wählende", "geometry"]


def test_read_any_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(DatasetError, match="not found"):
        read_any(tmp_path / "missing.shp")


def test_fetch_retries_transient_errors(monkeypatch) -> None:
    calls = _queue(monkeypatch, [
        FakeResponse(503),
        requests.ConnectionError("reset"),
        FakeResponse(200, FEATURES),
    ])

    gdf = fetch_wfs_layer(URL, params=FetchParams(timeout=5, max_retries=3, backoff=0.0))

    assert len(calls) == 3
    assert calls[0]["timeout"] == 5
    assert calls[0]["params"]["request"] == "GetFeature"
    assert len(gdf) == 1
    assert gdf.crs is not None


def test_fetch_gives_up_after_max_retries(monkeypatch) -> None:
    _queue(monkeypatch, [FakeResponse(503), FakeResponse(502)])

    with pytest.raises(DensityFetchError, match="2 attempts"):
        fetch_wfs_layer(URL, params=FetchParams(max_retries=2, backoff=0.0))


def test_fetch_does_not_retry_client_errors(monkeypatch) -> None:
    calls = _queue(monkeypatch, [FakeResponse(404), FakeResponse(200, FEATURES)])

    with pytest.raises(DensityFetchError):
        fetch_wfs_layer(URL, params=FetchParams(max_retries=3, backoff=0.0))
    assert len(calls) == 1


def test_load_density_blocks_from_local_file(tmp_path: Path) -> None:
    path = tmp_path / "density.parquet"
    gpd.GeoDataFrame({"EW2021": [10, 20]}, geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)], crs="EPSG:25833").to_parquet(path)

    blocks = load_density_blocks(str(path))

    assert list(blocks.columns) == ["ew2021", "geometry"]
    assert blocks.crs.to_epsg() == 25833


def test_read_any_rejects_unknown_extension(tmp_path: Path) -> None:
    path = tmp_path / "districts.txt"
    path.write_text("wlb\n01001\n")

    with pytest.raises(DatasetError, match="unsupported input type") as exc:
        read_any(path)
    assert exc.value.dataset == "districts"


EXCEPTION_REPORT = (
    b'<?xml version="1.0" encoding="UTF-8"?>'
    b'<ows:ExceptionReport xmlns:ows="http://www.opengis.net/ows/1.1" version="2.0.0">'
    b'<ows:Exception exceptionCode="InvalidParameterValue" locator="typeNames">'
    b"<ows:ExceptionText>Unknown feature type</ows:ExceptionText></ows:Exception></ows:ExceptionReport>"
)


def test_fetch_rejects_exception_report_with_status_200(monkeypatch) -> None:
    calls = _queue(monkeypatch, [FakeResponse(200, EXCEPTION_REPORT)])

    with pytest.raises(DensityFetchError, match="exception report"):
        fetch_wfs_layer(URL, params=FetchParams(max_retries=3, backoff=0.0))
    assert len(calls) == 1


def test_fetch_rejects_unreadable_body(monkeypatch) -> None:
    _queue(monkeypatch, [FakeResponse(200, b"service temporarily in maintenance")])

    with pytest.raises(DensityFetchError, match="not a readable vector layer"):
        fetch_wfs_layer(URL, params=FetchParams(max_retries=1, backoff=0.0))
